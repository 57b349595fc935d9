"""Test public API surface: imports work and exports are not shadowed."""

import types

import semcheck


def test_api_exports_core_functions():
    from semcheck.api import check_release, classify, parse

    for func in (check_release, classify, parse):
        assert isinstance(func, types.FunctionType)


def test_package_reexports_match_api():
    from semcheck import api

    assert semcheck.classify is api.classify
    assert semcheck.parse is api.parse
    assert semcheck.build_report is api.build_report


def test_no_module_shadowing():
    """Importing submodules must not replace function exports."""
    import semcheck.kernel.diff  # noqa: F401
    import semcheck.config  # noqa: F401

    assert callable(semcheck.classify)
    assert callable(semcheck.load_config)
    assert isinstance(semcheck.classify, types.FunctionType)


def test_internal_helpers_not_exported():
    assert "_internal" not in semcheck.__all__
    assert not any(name.startswith("_") and name != "__version__" for name in semcheck.__all__)


def test_error_classes_share_a_root():
    for name in ("ParseError", "ExtractionError", "ClassificationGap", "ConfigError"):
        assert issubclass(getattr(semcheck, name), semcheck.SemcheckError)
