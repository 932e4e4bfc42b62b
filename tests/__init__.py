# Copyright Red Hat
#
# tests/__init__.py - Root file system diff test package
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import logging
import os
import time

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
log.addHandler(file_handler)
log.addHandler(console_handler)

os.environ["TZ"] = "UTC"
time.tzset()


class MockArgs(object):
    diff_from = None
    diff_to = None
    backends = None
    use_bsdiff = False
    use_courgette = False
    use_zstd = False
    group_patterns = None
    cache_dir = None
    config = None
    jobs = None
    json = False
    pretty = False
    quiet = None
    debug = None
    verbose = 0
    version = False
