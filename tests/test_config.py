"""
Unit tests for session configuration.
"""

import pytest
from pydantic import ValidationError

from arqlink.config import MAX_TOTAL_PACKETS, SessionConfig
from arqlink.reliability.policy import ProtocolMode


class TestSessionConfig:
    """Tests for SessionConfig validation."""

    def test_defaults(self):
        """Defaults follow the reference constants."""
        config = SessionConfig()

        assert config.protocol_mode == ProtocolMode.SELECTIVE_REPEAT
        assert config.timeout == 1.0
        assert config.min_timeout == 0.1
        assert config.max_timeout == 5.0
        assert config.max_send_count == 10
        assert config.payload_size == 1024

    def test_mode_from_string(self):
        """Protocol modes parse from their wire names."""
        assert SessionConfig(protocol_mode="go_back_n").protocol_mode == ProtocolMode.GO_BACK_N

    def test_stop_and_wait_forces_window(self):
        """Stop-and-Wait always runs with a window of one."""
        config = SessionConfig(protocol_mode="stop_wait", window_size=16)
        assert config.window_size == 1

    def test_timeout_outside_bounds_rejected(self):
        """The base RTO must sit inside its bounds."""
        with pytest.raises(ValidationError):
            SessionConfig(timeout=10.0, max_timeout=5.0)
        with pytest.raises(ValidationError):
            SessionConfig(min_timeout=2.0, max_timeout=1.0, timeout=1.5)

    @pytest.mark.parametrize("field, value", [
        ("window_size", 0),
        ("total_packets", 0),
        ("total_packets", 2 ** 32 + 1),
        ("packet_loss_rate", 1.5),
        ("ack_loss_rate", -0.1),
        ("max_send_count", 0),
        ("payload_size", 2048),
        ("peer_port", 70000),
        ("protocol_mode", "token_ring"),
    ])
    def test_out_of_range_rejected(self, field, value):
        """Out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            SessionConfig(**{field: value})

    def test_total_packets_ceiling(self):
        """Sessions are capped well below the sequence space."""
        assert SessionConfig(total_packets=MAX_TOTAL_PACKETS).total_packets == MAX_TOTAL_PACKETS
        with pytest.raises(ValidationError):
            SessionConfig(total_packets=MAX_TOTAL_PACKETS + 1)
        with pytest.raises(ValidationError):
            SessionConfig(total_packets=2 ** 32)

    def test_json_dump(self):
        """The config serializes with enum values."""
        dumped = SessionConfig(protocol_mode="go_back_n").model_dump(mode='json')
        assert dumped["protocol_mode"] == "go_back_n"
