# -*- test-case-name: ebsplugin.common.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Running the plugin as a command: standard options, Eliot log output and
tying a service to the life of the reactor.
"""

import sys

from bitmath import MiB

from eliot import MessageType, fields, FileDestination, write_failure
from eliot.logwriter import ThreadedWriter

from twisted.application.service import MultiService, Service
from twisted.internet import task
from twisted.internet.defer import Deferred, maybeDeferred
from twisted.logger import LogLevel, formatEvent, globalLogBeginner
from twisted.python import usage
from twisted.python.logfile import LogFile
from twisted.python.filepath import FilePath

from zope.interface import Interface

from .. import __version__


__all__ = [
    'standard_options',
    'ICommandLineScript',
    'ScriptRunner',
    'main_for_service',
]

# Log files are rotated at this size, keeping this many old ones.
LOGFILE_LENGTH = int(MiB(100).to_Byte().value)
LOGFILE_COUNT = 5


def _open_logfile(path):
    """
    :param FilePath path: Where to log.  Missing parent directories are
        created.

    :return: A rotating ``LogFile``.
    """
    path.parent().makedirs(ignoreExistingDirectory=True)
    return LogFile.fromFullPath(
        path.path, rotateLength=LOGFILE_LENGTH, maxRotatedFiles=LOGFILE_COUNT)


def standard_options(cls):
    """
    Class decorator adding ``--version``, ``--verbose`` and ``--logfile`` to
    a ``usage.Options`` subclass.

    The decorated class accepts a ``sys_module`` keyword argument, a ``sys``
    like object used instead of ``sys`` in tests.
    """
    wrapped_init = cls.__init__

    def __init__(self, *args, **kwargs):
        self._sys_module = kwargs.pop('sys_module', sys)
        self['verbosity'] = 0
        self['logfile'] = self._sys_module.stdout
        wrapped_init(self, *args, **kwargs)

    def opt_version(self):
        """Print the version and exit."""
        self._sys_module.stdout.write(__version__ + '\n')
        raise SystemExit(0)

    def opt_verbose(self):
        """Log more.  May be given more than once."""
        self['verbosity'] += 1

    def opt_logfile(self, path):
        """
        Write logs to this file, rotating it as it grows, instead of to
        standard output.
        """
        self['logfile'] = _open_logfile(FilePath(path))

    cls.__init__ = __init__
    cls.opt_version = opt_version
    cls.opt_verbose = cls.opt_v = opt_verbose
    cls.opt_logfile = opt_logfile
    return cls


class ICommandLineScript(Interface):
    """
    The body of a command run by ``ScriptRunner``.
    """
    def main(reactor, options):
        """
        :param reactor: The reactor to run with.
        :param usage.Options options: The parsed command line.

        :return: A ``Deferred`` which fires when the command is done.
        """


TWISTED_LOG_MESSAGE = MessageType("twisted:log",
                                  fields(error=bool, message=str),
                                  "A log message from Twisted.")

_ERROR_LEVELS = frozenset({LogLevel.error, LogLevel.critical})


class EliotObserver(Service):
    """
    Copy Twisted's log events into Eliot while running.

    :ivar bool capture_stdout: Whether ``print`` and writes to standard error
        end up in the log too.
    """
    def __init__(self, capture_stdout=True):
        self.capture_stdout = capture_stdout

    def __call__(self, event):
        failure = event.get("log_failure")
        if failure is not None:
            write_failure(failure)
        message = formatEvent(event)
        if not message:
            return
        TWISTED_LOG_MESSAGE.log(
            error=event.get("log_level") in _ERROR_LEVELS,
            message=message,
        )

    def startService(self):
        Service.startService(self)
        # Only the first call takes effect, so this is never undone.
        globalLogBeginner.beginLoggingTo(
            [self], redirectStandardIO=self.capture_stdout)


def eliot_logging_service(log_file, reactor, capture_stdout):
    """
    :param log_file: A file-like object Eliot's JSON messages are written to.
    :param reactor: The reactor whose thread pool isn't used; the writer has
        its own thread.
    :param bool capture_stdout: See ``EliotObserver``.

    :return: A service writing Eliot messages to ``log_file`` and routing
        Twisted's own log into Eliot while it runs.
    """
    service = MultiService()
    ThreadedWriter(
        FileDestination(file=log_file), reactor).setServiceParent(service)
    EliotObserver(capture_stdout=capture_stdout).setServiceParent(service)
    return service


class ScriptRunner(object):
    """
    Parse the command line, start logging and run an
    ``ICommandLineScript`` until it finishes.

    :ivar _react: ``task.react``, replaced in tests.
    """
    _react = staticmethod(task.react)

    def __init__(self, script, options, logging=True,
                 reactor=None, sys_module=None):
        """
        :param ICommandLineScript script: What to run.
        :param usage.Options options: The command line parser.
        :param bool logging: Whether to write Eliot logs at all.
        :param reactor: The reactor to use, the global one by default.
        :param sys_module: A ``sys`` like object, for tests.
        """
        if reactor is None:
            from twisted.internet import reactor
        if sys_module is None:
            sys_module = sys
        self.script = script
        self.options = options
        self.logging = logging
        self._reactor = reactor
        self.sys_module = sys_module

    def _parse_options(self, arguments):
        """
        :raise SystemExit: With status 1, after printing the usage, if the
            arguments are invalid.
        :return: The parsed options.
        """
        try:
            self.options.parseOptions(arguments)
        except usage.UsageError as e:
            self.sys_module.stderr.write(str(self.options))
            self.sys_module.stderr.write('ERROR: {}\n'.format(e))
            raise SystemExit(1)
        return self.options

    def main(self):
        # Options are parsed before anything else happens since --version
        # and bad arguments exit immediately.
        options = self._parse_options(self.sys_module.argv[1:])

        if self.logging:
            log_service = eliot_logging_service(
                options['logfile'], self._reactor, True)
        else:
            log_service = Service()
        log_service.startService()

        def run(reactor):
            d = maybeDeferred(self.script.main, reactor, options)

            def failed(reason):
                if not reason.check(SystemExit):
                    write_failure(reason)
                return reason
            d.addErrback(failed)
            return d
        try:
            self._react(run, [], _reactor=self._reactor)
        finally:
            log_service.stopService()


def main_for_service(reactor, service):
    """
    Start ``service`` now and stop it when the reactor shuts down.

    :param IReactorCore reactor: The reactor whose shutdown stops the
        service.
    :param IService service: The service to run.

    :return: A ``Deferred`` which fires once the service has stopped.
    """
    service.startService()
    stopped = Deferred()

    def stop():
        maybeDeferred(service.stopService).chainDeferred(stopped)
        return stopped
    reactor.addSystemEventTrigger("before", "shutdown", stop)
    return stopped
