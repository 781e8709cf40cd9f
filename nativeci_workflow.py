# nativeci_workflow.py
# Unit test matrix for the native components: one job per component and
# platform, with quarantine lanes for suites that have known flaky tests.
from __future__ import annotations

from nativeci import dep, flag, linux, matrix, path_list, quarantine, root_of, wf, windows

DEPENDENCIES = [
    dep("core/bzip2", "static-link"),
    dep("core/libarchive", "static-build", "tool-path"),
    dep("core/libsodium", "static-link", "dynamic-runtime", "tool-path"),
    dep("core/openssl", "static-link", "tool-path"),
    dep("core/xz", "static-link"),
    dep("core/zeromq", "dynamic-runtime"),
    dep("core/protobuf", binlink=True),
]

ENVIRONMENT = [
    # build time: archives for the static linker, .pc files for pkg-config
    path_list("LIBRARY_PATH", "static-link"),
    path_list("PKG_CONFIG_PATH", "tool-path", "lib/pkgconfig"),
    # run time: shared objects the test binaries load
    path_list("LD_LIBRARY_PATH", "dynamic-runtime"),
    root_of("OPENSSL_DIR", "core/openssl"),
    root_of("LIBZMQ_PREFIX", "core/zeromq"),
    flag("OPENSSL_STATIC", "core/openssl", "static-link"),
    flag("SODIUM_STATIC", "core/libsodium", "static-link"),
    flag("LIBARCHIVE_STATIC", "core/libarchive", "static-build"),
]

LINUX_COMPONENTS = [
    "builder-api-client",
    "common",
    "hab",
    "launcher-client",
    "launcher-protocol",
    "pkg-export-docker",
    "pkg-export-helm",
    "pkg-export-kubernetes",
    "pkg-export-tar",
    "sup-client",
    "sup-protocol",
]


def workflow():
    return wf(
        matrix("component", LINUX_COMPONENTS).jobs(
            lambda c: linux(c, timeout_minutes=20 if c == "builder-api-client" else 10)
        ),
        linux("butterfly", test_options="--test-threads=1"),
        linux(
            "sup",
            features="ignore_integration_tests",
            flaky=quarantine("ignore_inconsistent_tests", retries=10),
        ),

        windows("builder-api-client", timeout_minutes=15),
        windows(
            "butterfly",
            test_options="--test-threads=1",
            timeout_minutes=35,
            flaky=quarantine("ignore_inconsistent_tests", retries=10),
        ),
        windows("common", test_options="--test-threads=1", timeout_minutes=20),
        windows("hab", timeout_minutes=20),
        windows("launcher-client"),
        windows("launcher-protocol"),
        windows("pkg-export-docker", timeout_minutes=20),
        windows("pkg-export-tar", timeout_minutes=20),
        # test (not code) concurrency issues; fails unless limited to one thread
        windows("sup", test_options="--test-threads=1", timeout_minutes=35),
        windows("sup-client", timeout_minutes=20),
        windows("sup-protocol", timeout_minutes=20),
    )
