# Copyright Red Hat
#
# rootfsdiff/progress.py - Root file system diff progress reporting
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Progress reporting for long running comparison passes.

Progress is written to ``sys.stderr`` by default so that reports and JSON
output on ``sys.stdout`` remain machine readable.
"""
from typing import Optional, TextIO
from abc import ABC, abstractmethod
import shutil
import time
import sys
import os

from ._rootfsdiff import register_progress, unregister_progress

#: Default number of columns if not detected from the terminal.
DEFAULT_COLUMNS = 80

#: Minimum width of a progress bar.
PROGRESS_MIN_WIDTH = 10

#: Default width of a progress bar as a fraction of the terminal size.
DEFAULT_WIDTH_FRAC = 0.4

#: Minimum interval between terminal redraws in seconds.
REDRAW_INTERVAL = 0.1

_CLEAR_LINE = "\r\033[K"


def _flush_with_broken_pipe_guard(stream: TextIO) -> None:
    """
    Flush ``stream``, converting ``BrokenPipeError`` into a quiet exit.

    :param stream: The stream to flush.
    :type stream: ``TextIO``
    """
    if stream is None or not hasattr(stream, "flush"):
        return
    try:
        stream.flush()
    except BrokenPipeError as err:
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            if hasattr(stream, "fileno"):
                os.dup2(devnull, stream.fileno())
        finally:
            os.close(devnull)
        raise SystemExit() from err


class ProgressBase(ABC):
    """
    An abstract progress reporting class.
    """

    def __init__(self, header: str = "", register: bool = True):
        """
        Initialise base progress state.

        :param header: The progress header to display.
        :type header: ``str``
        :param register: Register this ``ProgressBase`` for log callbacks.
        :type register: ``bool``
        """
        self.header: str = header
        self.total: int = 0
        self.done: int = 0
        self.first_update: bool = True
        self.registered: bool = False
        self.register: bool = register

    def reset_position(self):
        """Mark progress output as displaced by external output."""
        self.first_update = True

    def start(self, total: int):
        """
        Begin a progress run with the specified ``total``.

        A ``total`` of zero is accepted and produces no output: empty trees
        and empty result sets are valid inputs.

        :param total: The total number of expected progress items.
        :type total: ``int``
        :raises ``ValueError``: If ``total`` is negative.
        """
        if total < 0:
            raise ValueError("total cannot be negative.")

        self.total = total
        self.done = 0

        if self.register:
            register_progress(self)

        self._do_start()

    def _check_in_progress(self, done: int, step: str):
        theclass = self.__class__.__name__
        if done < 0:
            raise ValueError(f"{theclass}.{step}() done cannot be negative.")
        if done > self.total:
            raise ValueError(f"{theclass}.{step}() done cannot be > total.")

    def progress(self, done: int, message: Optional[str] = None):
        """
        Advance the progress indicator to the specified ``done`` count.

        :param done: The number of completed progress items.
        :type done: ``int``
        :param message: An optional progress message.
        :type message: ``Optional[str]``
        """
        self._check_in_progress(done, "progress")
        self.done = done
        if self.total:
            self._do_progress(done, message)

    def end(self, message: Optional[str] = None):
        """
        End the progress run and finalise the display.

        :param message: An optional completion message.
        :type message: ``Optional[str]``
        """
        if self.total:
            self._do_progress(self.total, "")
        self._do_end(message)
        self.total = 0
        if self.registered:
            unregister_progress(self)

    def cancel(self, message: Optional[str] = None):
        """
        End the progress run following an error.

        :param message: An optional error message.
        :type message: ``Optional[str]``
        """
        self._do_end(message)
        self.total = 0
        if self.registered:
            unregister_progress(self)

    @abstractmethod
    def _do_start(self):
        """Hook invoked when progress begins."""

    @abstractmethod
    def _do_progress(self, done: int, message: Optional[str] = None):
        """Hook for subclasses to update the progress display."""

    @abstractmethod
    def _do_end(self, message: Optional[str] = None):
        """Hook for subclasses to finalise the progress display."""


class Progress(ProgressBase):
    """
    A single line terminal progress bar, which looks like:

        Hashing: 20% [=======-----------------------------] message

    The line is redrawn in place at most every ``REDRAW_INTERVAL`` seconds.
    """

    BAR = "%s: %3d%% [%s%s] %s"  #: Progress bar format string
    DID = "="  #: Bar character for completed work.
    TODO = "-"  #: Bar character for uncompleted work.

    def __init__(
        self,
        header: str,
        register: bool = True,
        term_stream: Optional[TextIO] = None,
        width: Optional[int] = None,
    ):
        """
        Initialise a new terminal ``Progress`` object.

        :param header: The progress header to display.
        :type header: ``str``
        :param register: Register this ``Progress`` for log callbacks.
        :type register: ``bool``
        :param term_stream: The terminal stream to write to.
        :type term_stream: ``Optional[TextIO]``
        :param width: An optional bar width in characters.
        :type width: ``Optional[int]``
        """
        super().__init__(header=header, register=register)
        self.stream: TextIO = term_stream or sys.stderr
        columns = shutil.get_terminal_size((DEFAULT_COLUMNS, 24)).columns
        self.columns: int = columns
        if width is None:
            width = round((columns - len(header)) * DEFAULT_WIDTH_FRAC)
        self.width: int = max(PROGRESS_MIN_WIDTH, width)
        self._last: float = 0.0

    def _do_start(self):
        self._last = 0.0

    def _do_progress(self, done: int, message: Optional[str] = None):
        now = time.monotonic()
        if done != self.total and now - self._last < REDRAW_INTERVAL:
            return
        self._last = now

        percent = float(done) / float(self.total)
        n = int(self.width * percent)
        line = self.BAR % (
            self.header,
            percent * 100,
            self.DID * n,
            self.TODO * (self.width - n),
            message or "",
        )
        if len(line) >= self.columns:
            line = line[0 : self.columns - 4] + "..."

        # A log record was written below the bar: start on a fresh line.
        prefix = "" if self.first_update else _CLEAR_LINE
        self.first_update = False
        print(prefix + line, end="", file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)

    def _do_end(self, message: Optional[str] = None):
        print(_CLEAR_LINE, end="", file=self.stream)
        if message:
            print(message, file=self.stream)
        _flush_with_broken_pipe_guard(self.stream)


class NullProgress(ProgressBase):
    """
    A progress class that produces no output.
    """

    def _do_start(self):
        return

    # pylint: disable=unused-argument
    def _do_progress(self, done: int, message: Optional[str] = None):
        return

    # pylint: disable=unused-argument
    def _do_end(self, message: Optional[str] = None):
        return


class ProgressFactory:
    """
    A factory for constructing progress objects.
    """

    @staticmethod
    def get_progress(
        header: str,
        quiet: bool = False,
        term_stream: Optional[TextIO] = None,
        register: bool = True,
    ) -> ProgressBase:
        """
        Return an appropriate ``ProgressBase`` implementation.

        A ``NullProgress`` is returned when ``quiet`` is set or when the
        output stream is not a terminal.

        :param header: The progress report header.
        :type header: ``str``
        :param quiet: Suppress all output.
        :type quiet: ``bool``
        :param term_stream: An optional ``TextIO`` output object.
                            Defaults to ``sys.stderr`` if unspecified.
        :type term_stream: ``Optional[TextIO]``
        :param register: Register the new object with the log system for
                         notification callbacks.
        :type register: ``bool``
        :returns: An appropriate progress implementation.
        :rtype: ``ProgressBase``
        """
        term_stream = term_stream or sys.stderr
        if quiet or not hasattr(term_stream, "isatty") or not term_stream.isatty():
            return NullProgress(header=header, register=register)
        return Progress(header, register=register, term_stream=term_stream)


__all__ = [
    "ProgressBase",
    "Progress",
    "NullProgress",
    "ProgressFactory",
]
