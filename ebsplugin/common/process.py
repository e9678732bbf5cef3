# -*- test-case-name: ebsplugin.common.test.test_process -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Run system commands, logging what they do.
"""

from subprocess import PIPE, STDOUT, CalledProcessError, Popen

from eliot import ActionType, Field, register_exception_extractor
from pyrsistent import PClass, field

_COMMAND = Field(
    "command", list, "The argument list of the command.")
_STATUS = Field.for_types("status", [int], "The exit status of the command.")
_OUTPUT = Field.for_types(
    "output", [str], "The combined standard output and error of the command.")

RUN_PROCESS = ActionType(
    "ebsplugin:common:run_process",
    [_COMMAND],
    [_STATUS, _OUTPUT],
    "A command was run.")


class ProcessFailed(CalledProcessError):
    """
    A command exited with a non-zero status.

    The output of the command is part of the string form.
    """
    def __str__(self):
        lines = "\n".join("    |" + line for line in self.output.splitlines())
        return "{} and output:\n{}".format(
            CalledProcessError.__str__(self), lines)


register_exception_extractor(
    ProcessFailed, lambda e: {"status": e.returncode, "output": e.output})


class ProcessResult(PClass):
    """
    The outcome of a successful ``run_process``.

    :ivar list command: The argument list that was run.
    :ivar str output: The combined standard output and error.
    :ivar int status: The exit status, always ``0``.
    """
    command = field(type=list, mandatory=True)
    output = field(type=str, mandatory=True)
    status = field(type=int, mandatory=True)


def run_process(command):
    """
    Run a command and wait for it to exit.  This blocks; run it in a thread.

    :param list command: The argument list of the command.

    :raise ProcessFailed: If the command exits with a non-zero status.
    :return: A ``ProcessResult``.
    """
    with RUN_PROCESS(command=command) as action:
        process = Popen(command, stdout=PIPE, stderr=STDOUT)
        output, _ = process.communicate()
        output = output.decode("utf-8", "replace")
        if process.returncode:
            raise ProcessFailed(
                returncode=process.returncode, cmd=command, output=output)
        action.add_success_fields(status=process.returncode, output=output)
    return ProcessResult(
        command=command, output=output, status=process.returncode)
