from __future__ import annotations

from unittest.mock import patch

import pytest

import main
from errors import ConfigError
from models import TriageResult


def test_parse_args_backtest_implies_dry_run_and_audit() -> None:
    with patch.dict("os.environ", {}, clear=True):
        args = main.parse_args(["--product", "home", "--backtest", "--backtest-days", "14"])

    assert args.dry_run is True
    assert args.write_audit is True
    assert args.backtest_days == 14


def test_parse_args_reads_env_flags() -> None:
    with patch.dict("os.environ", {"TRIAGE_PRODUCT": "home", "DRY_RUN": "true", "VERBOSE": "1"}, clear=True):
        args = main.parse_args([])

    assert args.product == "home"
    assert args.dry_run is True
    assert args.verbose is True
    assert args.write_audit is False


def test_parse_args_requires_product() -> None:
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(SystemExit):
            main.parse_args([])


def test_run_product_requires_notion_key() -> None:
    args = main.parse_args(["--product", "home"])
    with patch.dict("os.environ", {}, clear=True), patch("main.load_product_config"):
        with pytest.raises(ConfigError, match="NOTION_API_KEY"):
            main.run_product("home", args)


def test_main_all_products_continues_after_failure() -> None:
    calls: list[str] = []

    def fake_run(name, args):
        calls.append(name)
        if name == "alpha":
            raise ConfigError("broken config")
        return TriageResult(fr_count=2, status="complete")

    with patch.dict("os.environ", {}, clear=True), \
         patch("main.load_dotenv"), \
         patch("main.list_available_products", return_value=["alpha", "beta"]), \
         patch("main.run_product", side_effect=fake_run):
        exit_code = main.main(["--product", "all"])

    assert calls == ["alpha", "beta"]
    assert exit_code == 1


def test_main_single_product_success() -> None:
    with patch.dict("os.environ", {}, clear=True), \
         patch("main.load_dotenv"), \
         patch("main.run_product", return_value=TriageResult(fr_count=0, status="no_frs")):
        assert main.main(["--product", "home", "--dry-run"]) == 0
