from __future__ import annotations

import json
import logging
import os
from concurrent.futures import Future
from typing import Any, Optional, Tuple

import click
from tqdm import tqdm

from . import __version__
from .api import SalesforceBroker, SFConfig
from .auth import token_preview
from .env_loader import load_env_files
from .exceptions import BrokerError, MissingCredentialsError
from .logging_config import configure_logging
from .transport import Blob
from .utils import ensure_dir, sanitize_filename

_logger = logging.getLogger(__name__)

# Load .env very early, so everything else sees env vars
load_env_files()

_CREDENTIALS_HELP = (
    "Set these environment variables (or create a .env file), e.g.:\n"
    "  SF_LOGIN_HOST=login.salesforce.com   # or test.salesforce.com / My Domain\n"
    "  SF_USERNAME=user@example.com\n"
    "  SF_PASSWORD=...\n"
    "  SF_SECURITY_TOKEN=...                # appended to the password\n"
    "  SF_CLIENT_ID=...                     # Connected App Consumer Key\n"
    "  SF_CLIENT_SECRET=...                 # Connected App Consumer Secret\n"
    "  SF_API_VERSION=v25.0                 # optional"
)


def _make_broker() -> SalesforceBroker:
    cfg = SFConfig.from_env()
    missing = cfg.missing()
    if missing:
        e = MissingCredentialsError(missing)
        raise click.ClickException(
            f"Missing Salesforce credentials: {', '.join(e.missing)}\n\n{_CREDENTIALS_HELP}"
        ) from e
    return SalesforceBroker(cfg)


def _wait(future: Future) -> Any:
    try:
        return future.result()
    except BrokerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from None


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Blob):
        return {"type": obj.type, "size": len(obj.content)}
    return str(obj)


def _echo_json(data: Any, pretty: bool) -> None:
    click.echo(json.dumps(data, indent=2 if pretty else None, default=_json_default))


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfbroker")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce broker CLI. Use subcommands like 'login' or 'query'."""
    configure_logging(loglevel)
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("login")
def cmd_login() -> None:
    """Log in with the configured credentials and show the instance host."""
    with _make_broker() as sf:
        try:
            bundle = sf.login()
        except BrokerError as e:
            click.echo(f"❌  Login failed: {e}", err=True)
            raise click.Abort() from None
    click.echo("✅  Salesforce login successful.")
    click.echo(f"Instance host: {bundle.instance_host}")
    click.echo(f"Token preview: {token_preview(bundle.access_token)}")


@cli.command("describe")
@click.argument("object_name", required=False)
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_describe(object_name: Optional[str], pretty: bool) -> None:
    """Describe all sObjects, or one sObject when OBJECT_NAME is given."""
    with _make_broker() as sf:
        _echo_json(_wait(sf.describe(object_name)), pretty)


@cli.command("query")
@click.argument("soql")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_query(soql: str, pretty: bool) -> None:
    """Run a SOQL query."""
    with _make_broker() as sf:
        _echo_json(_wait(sf.query_objects(soql)), pretty)


@cli.command("fetch")
@click.argument("object_name")
@click.argument("record_id")
@click.option("-f", "--field", "fields", multiple=True, help="Field to return (repeatable).")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_fetch(object_name: str, record_id: str, fields: Tuple[str, ...], pretty: bool) -> None:
    """Fetch one record by Id."""
    with _make_broker() as sf:
        _echo_json(_wait(sf.fetch_object(object_name, record_id, list(fields))), pretty)


@cli.command("attach")
@click.argument("parent_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--type", "content_type", default=None, help="MIME type (default: from extension).")
def cmd_attach(parent_id: str, path: str, content_type: Optional[str]) -> None:
    """Upload PATH as an Attachment on PARENT_ID."""
    with _make_broker() as sf:
        res = _wait(sf.attach_file(parent_id, path, content_type))
    click.echo(f"Created Attachment {res.get('id')}")


@cli.command("download")
@click.argument("attachment_id")
@click.option(
    "--out",
    "out_dir",
    default=".",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory to write the file into.",
)
def cmd_download(attachment_id: str, out_dir: str) -> None:
    """Stream an Attachment body to disk."""
    ensure_dir(out_dir)
    with _make_broker() as sf:
        stream = _wait(sf.attachment_stream(attachment_id))
        info = stream.info
        target = os.path.join(out_dir, sanitize_filename(info.name if info else attachment_id))
        with tqdm(total=info.size if info else None, unit="B", unit_scale=True, desc=attachment_id) as bar:
            written = stream.save(target, progress=bar.update)
    _logger.info("Downloaded %s (%d bytes) -> %s", attachment_id, written, target)
    click.echo(target)
