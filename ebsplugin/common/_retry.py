# -*- test-case-name: ebsplugin.common.test.test_retry -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Waiting for eventually consistent state, a poll at a time.
"""

from itertools import repeat

from eliot import ActionType, MessageType, Field
from eliot.twisted import DeferredContext

from twisted.python.reflect import fullyQualifiedName, safe_repr
from twisted.internet.task import deferLater
from twisted.internet.defer import maybeDeferred


def _callable_name(predicate):
    """
    :return: A readable name of ``predicate`` for the logs.
    """
    try:
        return fullyQualifiedName(predicate)
    except AttributeError:
        # Partials, lambdas bound into other objects and similar.
        return safe_repr(predicate)


class LoopExceeded(Exception):
    """
    ``loop_until`` ran out of delays before its predicate was satisfied.

    :ivar int attempts: How many times the predicate was called.
    :ivar last_result: The final falsey result of the predicate.
    """
    def __init__(self, predicate, attempts, last_result):
        Exception.__init__(self, predicate, attempts, last_result)
        self.attempts = attempts
        self.last_result = last_result

    def __str__(self):
        return "{} never true after {} attempts, last result: {}".format(
            _callable_name(self.args[0]), self.attempts,
            safe_repr(self.last_result))


LOOP_UNTIL_ACTION = ActionType(
    action_type="ebsplugin:common:loop_until",
    startFields=[Field("predicate", _callable_name)],
    successFields=[
        Field.for_types("attempts", [int], "Calls made to the predicate."),
        Field("result", safe_repr),
    ],
    description="Polling a predicate until it is true.")

LOOP_UNTIL_ITERATION_MESSAGE = MessageType(
    message_type="ebsplugin:common:loop_until:iteration",
    fields=[
        Field.for_types("attempt", [int], "Which call this was."),
        Field("result", safe_repr),
        Field.for_types(
            "delay", [float, int, None],
            "Seconds until the next call, or null if there is none."),
    ],
    description="The predicate was false.")


def loop_until(reactor, predicate, steps=None):
    """
    Call ``predicate`` until it returns something true, waiting between
    calls.

    The result can be cancelled at any point; a pending delay is cancelled
    with it and the result fails with ``CancelledError``.

    :param IReactorTime reactor: Used to wait between calls.
    :param predicate: Callable with no arguments, returning a value or a
        ``Deferred``.
    :param steps: Iterable of the delays, in seconds, before each further
        call.  Calls every 0.1 seconds forever by default.

    :raise LoopExceeded: If ``steps`` runs out first.
    :return: ``Deferred`` firing with the first true result.
    """
    if steps is None:
        steps = repeat(0.1)
    steps = iter(steps)
    attempts = [0]

    action = LOOP_UNTIL_ACTION(predicate=predicate)

    def attempt():
        attempts[0] += 1
        return action.run(maybeDeferred, predicate)

    def check(result):
        if result:
            action.add_success_fields(attempts=attempts[0], result=result)
            return result
        delay = next(steps, None)
        LOOP_UNTIL_ITERATION_MESSAGE.log(
            attempt=attempts[0], result=result, delay=delay)
        if delay is None:
            raise LoopExceeded(predicate, attempts[0], result)
        d = deferLater(reactor, delay, attempt)
        d.addCallback(lambda result: action.run(check, result))
        return d

    with action.context():
        d = DeferredContext(attempt())
        d.addCallback(check)
        return d.addActionFinish()


def timeout(reactor, deferred, seconds):
    """
    Cancel ``deferred`` unless it fires within ``seconds``.

    :param IReactorTime reactor: Used to schedule the cancellation.
    :param Deferred deferred: The ``Deferred`` to bound.
    :param float seconds: How long to wait.

    :return: ``deferred``.
    """
    pending = reactor.callLater(seconds, deferred.cancel)

    def finished(result):
        if pending.active():
            pending.cancel()
        return result
    deferred.addBoth(finished)
    return deferred
