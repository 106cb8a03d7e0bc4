"""Tests for reconnect policy and credential-error classification."""

import pytest

from fleet_uplink.connection.state import (
    CONNECTED_STATES,
    ConnectionState,
    describe_delay,
    is_credential_error,
    reconnect_delay,
)


class TestReconnectDelay:

    def test_first_retry_is_one_second(self):
        assert reconnect_delay(0) == 1.0

    @pytest.mark.parametrize("attempts", [1, 2, 3, 4])
    def test_quick_retries(self, attempts):
        assert reconnect_delay(attempts) == 5.0

    @pytest.mark.parametrize("attempts", [5, 6, 50])
    def test_slow_retries_after_five_attempts(self, attempts):
        assert reconnect_delay(attempts) == 300.0

    def test_describe_delay(self):
        assert describe_delay(1.0) == "1 second"
        assert describe_delay(5.0) == "5 seconds"
        assert describe_delay(300.0) == "5 minutes"


class TestCredentialErrors:

    @pytest.mark.parametrize("message", [
        "Invalid API key",
        "api key revoked",
        "UNAUTHORIZED",
        "token is invalid",
    ])
    def test_credential_errors(self, message):
        assert is_credential_error(message)

    @pytest.mark.parametrize("message", ["Server busy", "rate limited", "", None])
    def test_other_errors(self, message):
        assert not is_credential_error(message)


class TestConnectionState:

    def test_connected_states(self):
        assert ConnectionState.AUTHENTICATING in CONNECTED_STATES
        assert ConnectionState.AUTHENTICATED in CONNECTED_STATES
        assert ConnectionState.FAULT not in CONNECTED_STATES
        assert ConnectionState.UNREACHABLE not in CONNECTED_STATES

    def test_ordinals_are_stable(self):
        assert ConnectionState.DISCONNECTED.ordinal == 0
        assert ConnectionState.FAULT.ordinal == len(ConnectionState) - 1
