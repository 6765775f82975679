# Copyright 2025 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Waiting on state that other systems change: ACME identifiers and certificates, and DNS propagation. Every wait is a
fixed-interval refresh loop with a deadline and a cancellation event.
"""
import enum
import threading
import time

from .. import errors
from ..models import STATUS_INVALID
from ..tools import Reporter


# Constants and Variables
TICKS = 100
REPORT_EVERY = 20


class PollOutcome(enum.Enum):
    """What a single refresh of the watched resource means for the wait."""

    SUCCESS = "success"
    FATAL = "fatal"
    RETRY = "retry"


class StatusPoller:
    """Refreshes a resource until it reaches a terminal state, the deadline passes or the wait is cancelled."""

    def __init__(
            self,
            interval: float = 5,
            max_wait: float = 300,
            backoff: float = 1.0,
            max_interval: float = None,
            cancel: threading.Event = None,
            reporter: Reporter = None,
            clock=time.monotonic
    ):
        """
        Args:
            interval (float): Seconds between two refreshes.
            max_wait (float): Seconds after which the wait gives up with a timeout error.
            backoff (float): Factor applied to the interval after every unsuccessful refresh. `1.0` keeps it fixed.
            max_interval (float): Upper bound for the interval when `backoff` grows it.
            cancel (threading.Event): Setting this event stops the wait with `PollCancelled`.
            reporter (acme_dns_issuer.tools.Reporter): Receives progress and outcome records.
            clock (callable): Monotonic time source.
        """
        self.interval = interval
        self.max_wait = max_wait
        self.backoff = backoff
        self.max_interval = max_interval
        self.cancel = cancel or threading.Event()
        self.reporter = reporter or Reporter()
        self.clock = clock
        self.elapsed = 0.0
        self.attempts = 0

    def poll(self, refresh, check, phase: str, target: str, timeout_error=errors.ACMETimeout, fatal_error=None):
        """
        Runs the refresh loop.

        Args:
            refresh (callable): Returns the current state of the resource.
            check (callable): Maps a state returned by `refresh` to a `PollOutcome`.
            phase (str): The phase name used in report records.
            target (str): What is being waited on, used in report records and errors.
            timeout_error (type): The `PollTimeout` subclass raised when `max_wait` is exceeded.
            fatal_error (callable): Builds the exception raised for a `FATAL` outcome from the state.

        Returns:
            The state that produced the `SUCCESS` outcome.

        Raises:
            acme_dns_issuer.errors.PollTimeout: When the deadline passes first.
            acme_dns_issuer.errors.PollCancelled: When the cancellation event is set.
        """
        start = self.clock()
        deadline = start + self.max_wait
        interval = self.interval
        self.attempts = 0

        while True:
            self.__check_cancelled__(target)
            self.attempts += 1
            state = refresh()
            outcome = check(state)
            self.elapsed = self.clock() - start

            if outcome is PollOutcome.SUCCESS:
                self.reporter.success(phase, target, "reached after %.1f seconds", self.elapsed)
                return state
            if outcome is PollOutcome.FATAL:
                self.reporter.error(phase, target, "reached a failed state after %.1f seconds", self.elapsed)
                if fatal_error is None:
                    raise errors.IssuanceError(f"'{target}' reached a failed state.")
                raise fatal_error(state)

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise timeout_error(f"Gave up waiting on '{target}' after {self.elapsed:.1f} seconds.")

            self.__sleep__(min(interval, remaining), phase, target, start, deadline)
            interval = interval * self.backoff
            if self.max_interval is not None:
                interval = min(interval, self.max_interval)

    def __sleep__(self, duration: float, phase: str, target: str, start: float, deadline: float) -> None:
        tick = duration / TICKS
        for index in range(1, TICKS + 1):
            if self.cancel.wait(tick):
                self.__check_cancelled__(target)
            if index % REPORT_EVERY == 0:
                now = self.clock()
                self.reporter.progress(
                    phase, target, "waiting, %.0f seconds elapsed, %.0f seconds remaining",
                    now - start, max(deadline - now, 0)
                )

    def __check_cancelled__(self, target: str) -> None:
        if self.cancel.is_set():
            raise errors.PollCancelled(f"Wait on '{target}' was cancelled.")


def poll_identifier(client, alias: str, poller: StatusPoller):
    """
    Waits for an identifier to leave the pending and processing states.

    Args:
        client (acme_dns_issuer.client.ACMEClient): Refreshes the identifier from the CA.
        alias (str): The identifier alias.
        poller (acme_dns_issuer.polling.StatusPoller): Controls interval, deadline and cancellation.

    Returns:
        acme_dns_issuer.models.Identifier: The valid identifier.

    Raises:
        acme_dns_issuer.errors.InvalidIdentifier: When the CA marks the identifier invalid.
    """
    def check(identifier):
        if identifier.is_valid:
            return PollOutcome.SUCCESS
        if identifier.is_invalid:
            return PollOutcome.FATAL
        return PollOutcome.RETRY

    def invalid(identifier):
        return errors.InvalidIdentifier(f"Identifier '{identifier.alias}' for '{identifier.dns}' is invalid.")

    return poller.poll(
        refresh=lambda: client.refresh_identifier(alias),
        check=check,
        phase="identifier",
        target=alias,
        timeout_error=errors.ACMETimeout,
        fatal_error=invalid,
    )


def poll_certificate(client, alias: str, poller: StatusPoller):
    """
    Waits for a submitted certificate to be signed, i.e. for `issuer_serial_number` to be set.

    Returns:
        acme_dns_issuer.models.Certificate: The signed certificate.

    Raises:
        acme_dns_issuer.errors.CertificateError: When the CA rejects the order.
    """
    def check(certificate):
        if certificate.is_signed:
            return PollOutcome.SUCCESS
        if certificate.status == STATUS_INVALID:
            return PollOutcome.FATAL
        return PollOutcome.RETRY

    def rejected(certificate):
        return errors.CertificateError(f"Certificate '{certificate.alias}' was rejected by the CA.")

    return poller.poll(
        refresh=lambda: client.refresh_certificate(alias),
        check=check,
        phase="certificate",
        target=alias,
        timeout_error=errors.ACMETimeout,
        fatal_error=rejected,
    )


class PropagationPoller:
    """Waits until a TXT value can be read back from a (validation) DNS server."""

    def __init__(
            self,
            records,
            max_wait: float = 900,
            cancel: threading.Event = None,
            reporter: Reporter = None,
            clock=time.monotonic
    ):
        self.records = records
        self.max_wait = max_wait
        self.cancel = cancel or threading.Event()
        self.reporter = reporter or Reporter()
        self.clock = clock

    def wait_for_txt(self, name: str, zone: str, expected_value: str, server: str,
                     poll_interval_seconds: float = 10) -> float:
        """
        Blocks until `get_txt_records()` returns a value set equal to `expected_value`.

        Args:
            name (str): The record name relative to the zone.
            zone (str): The DNS zone.
            expected_value (str): The TXT value to wait for.
            server (str): The server to query.
            poll_interval_seconds (float): Seconds between two lookups.

        Returns:
            float: The seconds spent waiting.

        Raises:
            acme_dns_issuer.errors.PropagationTimeout: When the value was not observed within `max_wait` seconds.
            acme_dns_issuer.errors.ZoneNotFound: When the server does not know the zone.
        """
        def check(value_sets):
            if any("".join(value_set) == expected_value for value_set in value_sets or []):
                return PollOutcome.SUCCESS
            return PollOutcome.RETRY

        poller = StatusPoller(
            interval=poll_interval_seconds,
            max_wait=self.max_wait,
            cancel=self.cancel,
            reporter=self.reporter,
            clock=self.clock,
        )
        poller.poll(
            refresh=lambda: self.records.get_txt_records(name, zone, server),
            check=check,
            phase="propagation",
            target=f"{name}.{zone} via {server}",
            timeout_error=errors.PropagationTimeout,
        )
        return poller.elapsed
