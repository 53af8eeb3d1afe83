import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from common.core.exceptions import StorageUnavailableError
from workers import run_expiry_sweep


@patch("workers.run_expiry_sweep.logging")
@patch("workers.run_expiry_sweep.run_sweep", new=MagicMock())
class TestMain:
    @patch("workers.run_expiry_sweep.asyncio.run", return_value=3)
    def test_success_exits_zero(self, mock_asyncio_run, mock_logging):
        assert run_expiry_sweep.main() == 0
        mock_asyncio_run.assert_called_once()

    @patch(
        "workers.run_expiry_sweep.asyncio.run",
        side_effect=StorageUnavailableError("down"),
    )
    def test_storage_outage_exits_non_zero(self, mock_asyncio_run, mock_logging):
        assert run_expiry_sweep.main() == 1

    @patch("workers.run_expiry_sweep.asyncio.run", return_value=0)
    def test_configures_logging_through_public_api(
        self, mock_asyncio_run, mock_logging
    ):
        run_expiry_sweep.main()

        mock_logging.basicConfig.assert_called_once()
        assert not hasattr(run_expiry_sweep, "_initialize_telemetry")


class TestRunSweep:
    async def test_expires_lapsed_subscriptions(self, lapsed_subscription):
        mock_engine = MagicMock(dispose=AsyncMock())
        with patch("workers.run_expiry_sweep.engine", mock_engine):
            assert await run_expiry_sweep.run_sweep() == 1
        mock_engine.dispose.assert_awaited_once()

    async def test_disposes_engine_on_failure(self):
        mock_engine = MagicMock(dispose=AsyncMock())
        with patch("workers.run_expiry_sweep.engine", mock_engine), patch(
            "workers.run_expiry_sweep.SubscriptionService"
        ) as mock_service_cls:
            mock_service_cls.return_value.sweep = AsyncMock(
                side_effect=StorageUnavailableError("down")
            )
            with pytest.raises(StorageUnavailableError):
                await run_expiry_sweep.run_sweep()

        mock_engine.dispose.assert_awaited_once()
