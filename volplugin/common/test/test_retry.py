# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``volplugin.common._retry``.
"""

from itertools import repeat, islice

from testtools.matchers import AllMatch, GreaterThan, LessThan, MatchesAll

from eliot.testing import capture_logging, assertHasAction, LoggedMessage

from .. import backoff, poll_until, wait_for_state, LoopExceeded, TimedOut
from .._retry import (
    WAIT_FOR_STATE_ACTION, WAIT_FOR_STATE_ITERATION_MESSAGE,
)
from ...testtools import TestCase, CustomException, FakeClock


class BackoffTests(TestCase):
    """
    Tests for ``backoff``.
    """
    def test_linear(self):
        """
        Without a maximum or jitter the steps grow by ``step`` each time.
        """
        steps = backoff(step=0.5, maximum_step=None, timeout=None,
                        jitter=None)
        self.assertEqual([0.5, 1.0, 1.5, 2.0], list(islice(steps, 4)))

    def test_maximum(self):
        """
        Steps never exceed ``maximum_step``.
        """
        steps = backoff(step=1.0, maximum_step=2.5, timeout=None, jitter=None)
        self.assertEqual([1.0, 2.0, 2.5, 2.5], list(islice(steps, 4)))

    def test_timeout(self):
        """
        No further steps are generated once their sum would exceed
        ``timeout``.
        """
        steps = backoff(step=1.0, maximum_step=None, timeout=6.0,
                        jitter=None)
        self.assertEqual([1.0, 2.0, 3.0], list(steps))

    def test_jitter(self):
        """
        Each step is adjusted by at most ``jitter``.
        """
        steps = list(backoff(step=1.0, maximum_step=1.0, timeout=20.0,
                             jitter=0.2))
        self.assertThat(
            steps, AllMatch(MatchesAll(GreaterThan(0.79), LessThan(1.21))))

    def test_invalid_step(self):
        """
        A non-positive ``step`` is rejected.
        """
        self.assertRaises(ValueError, backoff, step=0.0)


class PollUntilTests(TestCase):
    """
    Tests for ``poll_until``.
    """

    def test_no_sleep_if_initially_true(self):
        """
        If the predicate starts off as True then we don't delay at all.
        """
        sleeps = []
        poll_until(lambda: True, repeat(1), sleeps.append)
        self.assertEqual([], sleeps)

    def test_polls_until_true(self):
        """
        The predicate is repeatedly call until the result is truthy, delaying
        by the interval each time.
        """
        sleeps = []
        results = [False, False, True]
        result = poll_until(lambda: results.pop(0), repeat(1), sleeps.append)
        self.assertEqual((True, [1, 1]), (result, sleeps))

    def test_default_sleep(self):
        """
        The ``poll_until`` function can be called with two arguments.
        """
        results = [False, True]
        result = poll_until(lambda: results.pop(0), repeat(0))
        self.assertEqual(True, result)

    def test_loop_exceeded(self):
        """
        If the iterable of intervals that we pass to ``poll_until`` is
        exhausted before we get a truthy return value, then we raise
        ``LoopExceeded``.
        """
        results = [False] * 5
        steps = [0.1] * 3
        self.assertRaises(
            LoopExceeded, poll_until, lambda: results.pop(0), steps,
            lambda ignored: None)

    def test_polls_one_last_time(self):
        """
        After intervals are exhausted, we poll one final time before
        abandoning.
        """
        # Three sleeps, one value to poll after the last sleep.
        results = [False, False, False, 42]
        steps = [0.1] * 3
        self.assertEqual(
            42,
            poll_until(lambda: results.pop(0), steps, lambda ignored: None))


class WaitForStateTests(TestCase):
    """
    Tests for ``wait_for_state``.
    """
    def setUp(self):
        super(WaitForStateTests, self).setUp()
        self.clock = FakeClock()

    def test_initial_success(self):
        """
        If the initiating call already reported the target state its result
        is returned without sleeping or polling.
        """
        calls = []

        def predicate():
            calls.append(None)
            return True

        result = wait_for_state(predicate, repeat(1.0), 10.0,
                                initial=u"done", clock=self.clock)
        self.assertEqual(
            (u"done", [], [], 0),
            (result, calls, self.clock.sleeps, self.clock.seconds()),
        )

    def test_polls_until_true(self):
        """
        The predicate is called after each step until it returns a true
        value, which is returned.
        """
        results = [None, None, u"available"]
        result = wait_for_state(lambda: results.pop(0), repeat(0.5), 10.0,
                                clock=self.clock)
        self.assertEqual((u"available", [0.5, 0.5, 0.5]),
                         (result, self.clock.sleeps))

    def test_timeout(self):
        """
        A predicate which never succeeds causes ``TimedOut`` no later than the
        timeout plus one poll interval.
        """
        e = self.assertRaises(
            TimedOut,
            wait_for_state, lambda: False, repeat(0.3), 2.0,
            clock=self.clock,
        )
        self.assertEqual((2.0, False), (e.timeout, e.last_result))
        self.assertThat(self.clock.seconds(), LessThan(2.0 + 0.3 + 1e-9))
        self.assertThat(self.clock.seconds(), GreaterThan(2.0 - 1e-9))

    def test_sleep_clamped_to_deadline(self):
        """
        A step longer than the time left is cut short at the deadline.
        """
        self.assertRaises(
            TimedOut,
            wait_for_state, lambda: False, repeat(5.0), 3.0,
            clock=self.clock,
        )
        self.assertEqual([3.0], self.clock.sleeps)

    def test_steps_exhausted(self):
        """
        If ``steps`` runs out before the deadline ``TimedOut`` is raised.
        """
        self.assertRaises(
            TimedOut,
            wait_for_state, lambda: None, [0.1, 0.1], 10.0,
            clock=self.clock,
        )

    def test_predicate_error(self):
        """
        An exception raised by the predicate ends the wait and propagates.
        """
        def predicate():
            raise CustomException()

        self.assertRaises(
            CustomException,
            wait_for_state, predicate, repeat(0.1), 10.0, clock=self.clock,
        )
        self.assertEqual([0.1], self.clock.sleeps)

    @capture_logging(None)
    def test_logging(self, logger):
        """
        The wait is logged as an action with a message for each unsuccessful
        poll.
        """
        results = [False, True]
        wait_for_state(lambda: results.pop(0), repeat(1.0), 10.0,
                       clock=self.clock)
        assertHasAction(self, logger, WAIT_FOR_STATE_ACTION, True,
                        startFields={u"timeout": 10.0},
                        endFields={u"result": True})
        self.assertEqual(
            [{u"result": False}],
            [{u"result": message.message[u"result"]}
             for message in LoggedMessage.ofType(
                 logger.messages, WAIT_FOR_STATE_ITERATION_MESSAGE)])
