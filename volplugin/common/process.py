# -*- test-case-name: volplugin.common.test.test_process -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Subprocess utilities.
"""
import os
import signal
from subprocess import PIPE, STDOUT, CalledProcessError, Popen, TimeoutExpired

from eliot import log_message, start_action
from pyrsistent import PClass, field


class _CalledProcessError(CalledProcessError):
    """
    Just like ``CalledProcessError`` except output is included in the string
    representation.
    """
    def __str__(self):
        base = super(_CalledProcessError, self).__str__()
        output = self.output.decode("utf-8", "replace")
        lines = "\n".join("    |" + line for line in output.splitlines())
        return base + " and output:\n" + lines


class ProcessTimeout(Exception):
    """
    A child process did not exit before its deadline and was killed.

    :ivar list command: The argument list of the process.
    :ivar float timeout: The deadline, in seconds.
    :ivar bytes output: Whatever the process wrote before it was killed.
    """
    def __init__(self, command, timeout, output):
        Exception.__init__(self, command, timeout, output)
        self.command = command
        self.timeout = timeout
        self.output = output


class _ProcessResult(PClass):
    """
    The return type for ``run_process`` representing the outcome of the process
    that was run.
    """
    command = field(type=list, mandatory=True)
    output = field(type=bytes, mandatory=True)
    status = field(type=int, mandatory=True)


def run_process(command, *args, **kwargs):
    """
    Run a child process, capturing its stdout and stderr.

    :param list command: An argument list to use to launch the child process.
    :param float timeout: Keyword-only.  If given, the child is killed once
        this many seconds have passed.

    :raise CalledProcessError: If the child process has a non-zero exit status.
    :raise ProcessTimeout: If the child process outlives ``timeout``.

    :return: A ``_ProcessResult`` instance describing the result of the child
         process.
    """
    timeout = kwargs.pop("timeout", None)
    kwargs["stdout"] = PIPE
    kwargs["stderr"] = STDOUT
    action = start_action(
        action_type="volplugin:common:run_process",
        command=command, timeout=timeout,
    )
    with action:
        process = Popen(command, *args, **kwargs)
        try:
            output, _ = process.communicate(timeout=timeout)
        except TimeoutExpired:
            if kwargs.get("start_new_session"):
                # Take down the whole group, not just the shell.
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
            output, _ = process.communicate()
            raise ProcessTimeout(command, timeout, output)
        status = process.returncode
        result = _ProcessResult(command=command, output=output, status=status)
        log_message(
            message_type="volplugin:common:run_process:result",
            command=result.command,
            output=result.output.decode("utf-8", "replace"),
            status=result.status,
        )
        if result.status:
            raise _CalledProcessError(
                returncode=status, cmd=command, output=output,
            )
    return result
