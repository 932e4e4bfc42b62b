# Copyright Red Hat
#
# rootfsdiff/backends/diffoscope.py - diffoscope report backend
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Human readable difference reports with ``diffoscope``, run from a container
image.
"""
from . import CommandBackend
from ..difftypes import BackendKind

#: Default limit for the size of the text report
DIFFOSCOPE_MAX_TEXT_REPORT_SIZE = 8192

#: Configuration key for the text report size limit
CFG_MAX_REPORT_SIZE = "MaxTextReportSize"


class DiffoscopeBackend(CommandBackend):
    """
    Write a ``diffoscope`` text report comparing two files.

    ``diffoscope`` exits with status 1 when differences are found; this is
    the expected outcome for updated files.
    """

    name = "diffoscope"
    extension = "diffoscope"
    kind = BackendKind.REPORT

    container = "registry.salsa.debian.org/reproducible-builds/diffoscope"
    command = ["$from", "$to"]
    ok_status = (0, 1)
    capture_stdout = True

    def build_args(self, from_path, to_path, out_path):
        args = super().build_args(from_path, to_path, out_path)
        limit = self._get_int(CFG_MAX_REPORT_SIZE, DIFFOSCOPE_MAX_TEXT_REPORT_SIZE)
        option = f"--max-text-report-size={limit}"
        # Options follow the image name: the image entry point is diffoscope.
        index = args.index(self.image) + 1
        return args[:index] + [option] + args[index:]


__all__ = ["DiffoscopeBackend"]
