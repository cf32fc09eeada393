def test_import_package_and_version_smoke():
    import sfbroker

    assert isinstance(sfbroker.__version__, str)
    assert sfbroker.SalesforceBroker is not None


def test_main_module_imports():
    import sfbroker.__main__ as main_mod

    assert callable(main_mod.main)
