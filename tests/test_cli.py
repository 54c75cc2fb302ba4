"""Tests for the command line surface."""

import argparse
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from tests.fakes import ALICE, BOB, CAROL, FakeClock, FakeLedger, ether
from tokenmarket import cli
from tokenmarket.app import TokenMarket
from tokenmarket.exceptions import (
    GatewayError,
    InvariantViolation,
    MarketError,
    UploadError,
    ValidationError,
)
from tokenmarket.metadata.client import MetadataClient


@pytest.fixture
def metadata() -> AsyncMock:
    client = AsyncMock(spec=MetadataClient)
    client.upload_image.return_value = "http://localhost:3001/images/1-art.png"
    client.upload_metadata.return_value = "http://localhost:3001/metadata/1.json"
    return client


@pytest.fixture
def fake_market(
    monkeypatch: pytest.MonkeyPatch,
    ledger: FakeLedger,
    clock: FakeClock,
    metadata: AsyncMock,
) -> FakeLedger:
    def build(args: argparse.Namespace, **overrides) -> TokenMarket:
        overrides.setdefault("tick_interval", 1.0)
        return TokenMarket(
            account=args.account,
            transport=ledger,
            metadata=metadata,
            clock=clock,
            **overrides,
        )

    monkeypatch.setattr(cli, "_build_market", build)
    return ledger


class TestParser:
    def test_command_arguments(self) -> None:
        args = cli.build_parser().parse_args(
            ["--account", ALICE, "confirm-rent", "12", "0.1"]
        )

        assert args.command == "confirm-rent"
        assert args.token_id == "12"
        assert args.amount == "0.1"
        assert args.account == ALICE

    def test_every_command_is_registered(self) -> None:
        parser = cli.build_parser()

        for name, (_, params, _) in cli.COMMANDS.items():
            argv = [name] + ["1"] * len(params)
            assert parser.parse_args(argv).command == name

    def test_create_asset_requires_name(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["create-asset", "--image", "x.png"])


class TestReportError:
    @pytest.mark.parametrize(
        ("error", "code", "prefix"),
        [
            (ValidationError("bad"), cli.EXIT_VALIDATION, "Invalid input"),
            (InvariantViolation("blocked"), cli.EXIT_INVARIANT, "Not allowed"),
            (GatewayError("down"), cli.EXIT_GATEWAY, "Ledger error"),
            (UploadError("rejected"), cli.EXIT_UPLOAD, "Upload failed"),
            (MarketError("other"), cli.EXIT_ERROR, "Error"),
        ],
    )
    def test_distinct_codes(
        self,
        capsys: pytest.CaptureFixture[str],
        error: Exception,
        code: int,
        prefix: str,
    ) -> None:
        assert cli.report_error(error) == code
        assert capsys.readouterr().err.startswith(f"{prefix}: ")


class TestMain:
    def test_invalid_account(self, capsys: pytest.CaptureFixture[str]) -> None:
        code = cli.main(["--account", "nobody", "assets"])

        assert code == cli.EXIT_ERROR
        assert "account address" in capsys.readouterr().err

    def test_assets_lists_records(
        self, fake_market: FakeLedger, capsys: pytest.CaptureFixture[str]
    ) -> None:
        # Arrange
        fake_market.mint(1, ALICE, name="Sunset", sale_price=ether("1.5"))

        # Act
        code = cli.main(["--account", ALICE, "assets"])

        # Assert
        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert "Name: Sunset" in out
        assert "Sale Price (ETH): 1.5" in out

    def test_set_sale_price(
        self, fake_market: FakeLedger, capsys: pytest.CaptureFixture[str]
    ) -> None:
        # Arrange
        fake_market.mint(7, ALICE)

        # Act
        code = cli.main(["--account", ALICE, "set-sale-price", "7", "1.5"])

        # Assert
        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert "set-sale-price token 7 confirmed" in out
        assert "For sale (1.5 ETH)" in out
        assert fake_market.tokens[7].sale_price == ether("1.5")

    def test_validation_error_exit_code(
        self, fake_market: FakeLedger, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = cli.main(["--account", ALICE, "set-sale-price", "abc", "1"])

        assert code == cli.EXIT_VALIDATION
        assert "Invalid input: " in capsys.readouterr().err
        assert fake_market.writes == []

    def test_blocked_transfer_exit_code(
        self,
        fake_market: FakeLedger,
        clock: FakeClock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        # Arrange
        fake_market.mint(5, ALICE, renter=BOB, rental_end=int(clock()) + 600)

        # Act
        code = cli.main(["--account", ALICE, "transfer", "5", CAROL])

        # Assert
        assert code == cli.EXIT_INVARIANT
        assert "cannot be transferred" in capsys.readouterr().err
        assert fake_market.writes == []

    def test_ledger_rejection_exit_code(self, fake_market: FakeLedger) -> None:
        fake_market.mint(4, BOB)

        code = cli.main(["--account", ALICE, "set-sale-price", "4", "1"])

        assert code == cli.EXIT_GATEWAY

    def test_create_asset(
        self,
        fake_market: FakeLedger,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        # Arrange
        image = tmp_path / "art.png"
        image.write_bytes(b"\x89PNG")

        # Act
        code = cli.main(
            [
                "--account",
                ALICE,
                "create-asset",
                "--name",
                "Sunset",
                "--description",
                "Oil on canvas",
                "--image",
                str(image),
                "--attributes",
                '{"attributes": [{"traitType": "Size", "value": "100x100"}]}',
            ]
        )

        # Assert
        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert "metadata=http://localhost:3001/metadata/1.json" in out
        assert fake_market.tokens[1].attributes == [("Size", "100x100")]

    def test_create_asset_upload_failure(
        self,
        fake_market: FakeLedger,
        metadata: AsyncMock,
        tmp_path: Path,
    ) -> None:
        # Arrange
        image = tmp_path / "art.png"
        image.write_bytes(b"\x89PNG")
        metadata.upload_metadata.side_effect = UploadError("status 500")

        # Act
        code = cli.main(
            [
                "--account",
                ALICE,
                "create-asset",
                "--name",
                "A",
                "--description",
                "B",
                "--image",
                str(image),
            ]
        )

        # Assert
        assert code == cli.EXIT_UPLOAD
        assert fake_market.writes == []

    def test_missing_image_file(self, fake_market: FakeLedger, tmp_path: Path) -> None:
        code = cli.main(
            [
                "--account",
                ALICE,
                "create-asset",
                "--name",
                "A",
                "--description",
                "B",
                "--image",
                str(tmp_path / "missing.png"),
            ]
        )

        assert code == cli.EXIT_VALIDATION
