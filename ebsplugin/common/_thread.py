# -*- test-case-name: ebsplugin.common.test.test_thread -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tools for moving blocking work off the reactor thread.

Work sent to a thread keeps the Eliot context it was sent from, so messages
logged by boto3 calls and commands still belong to the request that caused
them.
"""

from eliot import preserve_context

from twisted.internet.threads import deferToThreadPool

from zope.interface.interface import Method


def _run_in_threadpool(reactor, threadpool, function, *args, **kwargs):
    return deferToThreadPool(
        reactor, threadpool, preserve_context(function), *args, **kwargs)


def _threaded_method(method_name, reactor_name, sync_name, threadpool_name):
    """
    :return: A method running ``method_name`` of the object named by
        ``sync_name`` in a thread pool, returning a ``Deferred``.
    """
    def run(self, *args, **kwargs):
        original = getattr(getattr(self, sync_name), method_name)
        return _run_in_threadpool(
            getattr(self, reactor_name), getattr(self, threadpool_name),
            original, *args, **kwargs)
    run.__name__ = method_name
    return run


def auto_threaded(interface, reactor, sync, threadpool):
    """
    Create a class decorator adding a thread pool backed, asynchronous
    version of every method of ``interface``.

    :param zope.interface.InterfaceClass interface: The interface whose
        methods are added.  It may only declare methods.
    :param str reactor: The name of the attribute of instances referring to
        the reactor results are delivered in.
    :param str sync: The name of the attribute of instances referring to the
        blocking provider of ``interface``.
    :param str threadpool: The name of the attribute of instances referring to
        the ``twisted.python.threadpool.ThreadPool`` the work runs in.

    :raise TypeError: If ``interface`` declares attributes which aren't
        methods.
    :return: The class decorator.
    """
    names = list(interface.names())
    for name in names:
        if not isinstance(interface[name], Method):
            raise TypeError(
                "auto_threaded does not support interfaces with non-method "
                "attributes ({}.{})".format(interface.__name__, name))

    def decorator(cls):
        for name in names:
            setattr(
                cls, name,
                _threaded_method(name, reactor, sync, threadpool))
        return cls
    return decorator


def in_threadpool(reactor, threadpool):
    """
    Create a callable which runs a blocking function in ``threadpool``.

    :param reactor: The reactor the results are delivered in.
    :param twisted.python.threadpool.ThreadPool threadpool: Where the work
        happens.

    :return: A callable with the signature of ``maybeDeferred`` which
        returns a ``Deferred`` firing with the function's result.
    """
    def run(function, *args, **kwargs):
        return _run_in_threadpool(
            reactor, threadpool, function, *args, **kwargs)
    return run
