# -*- test-case-name: volplugin.common.test.test_retry -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Helpers for retrying things and for waiting on remote state changes.
"""

from functools import partial
from inspect import getfile, getsourcelines
from itertools import chain, count, repeat, takewhile
from random import uniform
import time

from eliot import ActionType, MessageType, Field

from twisted.python.reflect import safe_repr


def backoff(step=5.0, maximum_step=60.0, timeout=10*60.0, jitter=0.2):
    """
    Generate increasingly large values for use as the ``steps`` argument to
    retry functions.

    :param float step: The amount by which to increase successive values.
    :param float maximum_step: The maximum value that will be
        generated. ``None`` means no maximum.
    :param float timeout: No further values will be generated when the sum of
        the generated steps is greater than ``timeout``. ``None`` means no
        timeout.
    :param float jitter: If not ``None``, the generated values will be adjusted
        by a random amount between +/- ``jitter.
    :returns: A generator of floats.
    """
    if step <= 0.0:
        raise ValueError("Invalid ``step`` ({!r}). "
                         "Must be > 0.0.".format(step))
    steps = map(
        lambda x: x * step,
        count(start=1)
    )
    if maximum_step is not None:
        if maximum_step <= 0.0:
            raise ValueError(
                "Invalid ``maximum_step`` ({!r}). "
                "Must be > 0.0.".format(
                    maximum_step
                )
            )

        steps = takewhile(
            lambda x: x < maximum_step,
            steps
        )
        steps = chain(
            steps,
            repeat(maximum_step)
        )
    if jitter is not None:
        steps = map(
            lambda x: x + uniform(-jitter, jitter),
            steps,
        )
    if timeout is not None:
        total_time = [0]

        def maybe_timeout(values):
            for value in values:
                total_time[0] += value
                if total_time[0] > timeout:
                    break
                yield value

        steps = maybe_timeout(steps)

    return steps


def function_serializer(function):
    """
    Serialize the given function for logging by eliot.

    :param function: Function to serialize.

    :return: Serialized version of function for inclusion in logs.
    """
    try:
        return {
            "function": str(function),
            "file": getfile(function),
            "line": getsourcelines(function)[1]
        }
    except OSError:
        # One debugging method involves changing .py files and is incompatible
        # with inspecting the source.
        return {
            "function": str(function),
        }
    except TypeError:
        # Callable not supported by inspect.getfile
        if isinstance(function, partial):
            return {
                'partial': function_serializer(function.func)
            }
        else:
            return {
                "function": str(function),
            }


class LoopExceeded(Exception):
    """
    Raised when ``poll_until`` looped too many times.
    """

    def __init__(self, predicate, last_result):
        super(LoopExceeded, self).__init__(
            '%r never True in poll_until, last result: %r'
            % (predicate, last_result))


class TimedOut(Exception):
    """
    Raised when ``wait_for_state`` did not observe the target state before its
    deadline.

    :ivar predicate: The query that never returned a true value.
    :ivar float timeout: The bound, in seconds, that was exceeded.
    :ivar last_result: The last value returned by ``predicate``.
    """
    def __init__(self, predicate, timeout, last_result):
        super(TimedOut, self).__init__(
            'operation timed out after %rs waiting on %r, last result: %r'
            % (timeout, predicate, last_result))
        self.predicate = predicate
        self.timeout = timeout
        self.last_result = last_result


class SystemClock(object):
    """
    The real passage of time, as needed by ``wait_for_state``.
    """
    def seconds(self):
        return time.monotonic()

    def sleep(self, seconds):
        time.sleep(seconds)


WAIT_FOR_STATE_ACTION = ActionType(
    action_type="volplugin:common:wait_for_state",
    startFields=[
        Field("predicate", function_serializer),
        Field.for_types("timeout", [float, int],
                        "Seconds allowed to reach the target state."),
    ],
    successFields=[Field("result", serializer=safe_repr)],
    description="Waiting until a remote resource reaches a target state.")

WAIT_FOR_STATE_ITERATION_MESSAGE = MessageType(
    message_type="volplugin:common:wait_for_state:iteration",
    fields=[Field("result", serializer=safe_repr)],
    description="Target state not reached, polling again.")


def poll_until(predicate, steps, sleep=None):
    """
    Perform steps until a non-false result is returned.

    :param predicate: a function to be called until it returns a
        non-false result.
    :param [float] steps: An iterable of delay intervals, measured in seconds.
    :param callable sleep: called with the interval to delay on.
        Defaults to `time.sleep`.
    :returns: the non-false result from the final call.
    :raise LoopExceeded: If given a finite sequence of steps, and we exhaust
        that sequence waiting for predicate to be truthy.
    """
    if sleep is None:
        sleep = time.sleep
    for step in steps:
        result = predicate()
        if result:
            return result
        sleep(step)
    result = predicate()
    if result:
        return result
    raise LoopExceeded(predicate, result)


def wait_for_state(predicate, steps, timeout, initial=None, clock=None):
    """
    Turn an asynchronous remote state transition into a blocking call.

    If ``initial`` is already true (the call which started the transition
    reported the target state in its response) it is returned without
    sleeping.  Otherwise ``predicate`` is called after each delay in
    ``steps`` until it returns a true value.  The delay before each poll is
    cut short by the absolute deadline, so the wait never lasts longer than
    ``timeout`` plus the time spent inside ``predicate``.

    :param predicate: A nullary callable which re-fetches the resource and
        returns a true value once it has reached the target state.  Anything
        it raises is terminal and propagates unchanged.
    :param [float] steps: Delay intervals, in seconds, between polls.
    :param float timeout: Seconds after which to give up.
    :param initial: The state-check result derived from the response of the
        initiating call.
    :param clock: An object with ``seconds()`` and ``sleep(seconds)``.
        Defaults to ``SystemClock()``.

    :raise TimedOut: If the deadline passes first, or ``steps`` runs out.
    :return: The first true value returned by ``predicate``, or ``initial``.
    """
    if clock is None:
        clock = SystemClock()
    with WAIT_FOR_STATE_ACTION(predicate=predicate, timeout=timeout) as action:
        if initial:
            action.add_success_fields(result=initial)
            return initial

        deadline = clock.seconds() + timeout
        result = initial
        for step in steps:
            remaining = deadline - clock.seconds()
            if remaining < step:
                clock.sleep(max(remaining, 0))
                break
            clock.sleep(step)
            result = predicate()
            if result:
                action.add_success_fields(result=result)
                return result
            WAIT_FOR_STATE_ITERATION_MESSAGE.log(result=result)
        raise TimedOut(predicate, timeout, result)
