import json
from unittest.mock import AsyncMock, patch

import pytest

from health_storage.cli.storage_cli import StorageCLI, main
from health_storage.database.errors import ConnectFailedError
from health_storage.models.storage_models import StartupReport


@pytest.fixture
def mock_storage_manager():
    with patch("health_storage.cli.storage_cli.StorageManager") as mock_cls:
        instance = mock_cls.return_value
        instance.start = AsyncMock(return_value=StartupReport())
        instance.stop = AsyncMock()
        yield mock_cls


@pytest.mark.asyncio
async def test_provision_runs_without_change_feed(test_settings, mock_storage_manager, capsys):
    """Test that a one-shot provisioning run never starts the change feed."""
    cli = StorageCLI(test_settings.model_copy(update={"CHANGE_FEED_ENABLED": True}))

    assert await cli.provision() is True

    config = mock_storage_manager.call_args.args[0]
    assert config.CHANGE_FEED_ENABLED is False
    mock_storage_manager.return_value.stop.assert_awaited_once()
    out = capsys.readouterr().out
    assert "collections" in json.loads(out[out.index("{") :])


@pytest.mark.asyncio
async def test_provision_failure_returns_false(test_settings, mock_storage_manager):
    mock_storage_manager.return_value.start = AsyncMock(side_effect=ConnectFailedError("timed out"))

    assert await StorageCLI(test_settings).provision() is False


@pytest.mark.asyncio
async def test_verify_reports_each_collection(test_settings, connection_handle, capsys):
    with patch("health_storage.cli.storage_cli.connect", new=AsyncMock(return_value=connection_handle)):
        ok = await StorageCLI(test_settings).verify()

    reports = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith('{"collection"')]
    assert len(reports) == 24
    # nothing was provisioned, so every declared index is missing
    assert ok is False
    assert connection_handle.closed is True


def test_main_without_command_exits_with_error():
    with pytest.raises(SystemExit) as exc_info:
        main([])

    assert exc_info.value.code == 1


def test_main_applies_overrides():
    with patch("health_storage.cli.storage_cli.StorageCLI") as mock_cli:
        mock_cli.return_value.provision = AsyncMock(return_value=True)
        with pytest.raises(SystemExit) as exc_info:
            main(["--url", "mongodb://db.example.org:27017", "--database", "health_staging", "provision"])

    config = mock_cli.call_args.args[0]
    assert config.MONGODB_URL == "mongodb://db.example.org:27017"
    assert config.MONGODB_DATABASE == "health_staging"
    assert exc_info.value.code == 0
