"""Tests for the salesboost command-line client."""

from __future__ import annotations

import tomllib
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.salesboost import cli
from src.salesboost.auth.cache import DEFAULT_CACHE_KEY
from src.salesboost.auth.service import AuthService, LoginError
from src.salesboost.deals.aggregator import PipelineAggregator
from src.salesboost.deals.schemas import Deal, DealStage
from src.salesboost.deals.store import DealStore
from src.salesboost.session import SalesSession


@pytest.fixture
def session(cache, rep_user, monkeypatch) -> SalesSession:
    auth = AsyncMock(spec=AuthService)
    auth.check.return_value = rep_user
    auth.logout.return_value = True
    store = AsyncMock(spec=DealStore)
    store.list.return_value = [
        Deal.model_validate({"id": 4, "tcv": 300, "stage": "proposal", "user": {"id": rep_user.id}}),
    ]

    async def update_stage(deal_id: int, stage: DealStage) -> Deal:
        return Deal.model_validate({"id": deal_id, "stage": stage.value})

    store.update_stage.side_effect = update_stage

    session = SalesSession(cache, auth, store, verify_delay=0)
    monkeypatch.setattr(SalesSession, "from_settings", lambda *args, **kwargs: session)
    return session


# ── Parser ──────────────────────────────────────────────────────────────────


class TestParser:
    def test_stage_choices(self) -> None:
        args = cli.build_parser().parse_args(["stage", "4", "closed_won"])
        assert args.deal_id == 4
        assert args.stage == "closed_won"

    def test_unknown_stage_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["stage", "4", "won"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


# ── Output ──────────────────────────────────────────────────────────────────


class TestFormatStats:
    def test_lists_every_stage(self) -> None:
        stats = PipelineAggregator().compute(
            [Deal.model_validate({"id": 1, "tcv": 1234.5, "stage": "negotiation"})]
        )

        text = cli.format_stats(stats)

        assert "1,234.50" in text
        assert "Win rate:              0.0%" in text
        for stage in DealStage:
            assert stage.value in text


# ── Commands ────────────────────────────────────────────────────────────────


class TestCommands:
    def test_whoami_requires_login(self, session, capsys) -> None:
        session.auth._service.check.return_value = None

        assert cli.main(["whoami"]) == 1
        assert "Not logged in" in capsys.readouterr().err

    def test_whoami(self, seed_auth, session, rep_user, capsys) -> None:
        seed_auth(rep_user)

        assert cli.main(["whoami"]) == 0
        assert "role=sales_rep" in capsys.readouterr().out

    def test_stats(self, seed_auth, session, rep_user, capsys) -> None:
        seed_auth(rep_user)

        assert cli.main(["stats"]) == 0
        assert "300.00" in capsys.readouterr().out

    def test_advance(self, seed_auth, session, rep_user, capsys) -> None:
        seed_auth(rep_user)

        assert cli.main(["advance", "4"]) == 0
        assert "moved to negotiation" in capsys.readouterr().out

    def test_unknown_deal_reports_error(self, seed_auth, session, rep_user, capsys) -> None:
        seed_auth(rep_user)

        assert cli.main(["stage", "99", "closed_won"]) == 1
        assert "Deal 99 is not in the pipeline" in capsys.readouterr().err

    def test_login_refused(self, session, capsys) -> None:
        session.auth._service.login.side_effect = LoginError("Invalid username or password")

        assert cli.main(["login", "rep", "--password", "bad"]) == 1
        assert "Invalid username or password" in capsys.readouterr().err

    def test_logout(self, seed_auth, storage, session, rep_user, capsys) -> None:
        seed_auth(rep_user)

        assert cli.main(["logout"]) == 0
        assert storage.get(DEFAULT_CACHE_KEY) is None


# ── Packaging ───────────────────────────────────────────────────────────────


class TestPackaging:
    def test_src_prefix_not_installed(self) -> None:
        """The client runs as `python -m src.salesboost.cli`; no top-level `src` lands in site-packages."""
        pyproject = tomllib.loads((Path(__file__).parents[1] / "pyproject.toml").read_text())

        assert pyproject["tool"]["setuptools"]["packages"] == []
        assert "scripts" not in pyproject["project"]
