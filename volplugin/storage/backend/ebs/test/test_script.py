# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``volplugin.storage.backend.ebs.script``.
"""

from datetime import timedelta

from twisted.python.usage import UsageError

import yaml

from zope.interface import implementer

from .....common.script import ScriptRunner
from .....testtools import TestCase, FakeSysModule
from ....driver import ICRUDDriver, IMountDriver, Mount, Volume
from ..driver import GIB, EBSDriver, StepFailed
from ..script import (
    DEFAULT_MOUNTPATH, ConfigurationError, EBSOptions, EBSScript,
    driver_from_configuration, get_configuration,
)


@implementer(ICRUDDriver, IMountDriver)
class RecordingDriver(object):
    """
    A driver which records the operations run against it.

    :ivar list calls: ``(operation, options)`` for each call.
    :ivar error: If not ``None``, raised by every operation.
    """
    mountpath = u"/mnt/recorded"

    def __init__(self, volumes=()):
        self.calls = []
        self.volumes = list(volumes)
        self.error = None

    def _record(self, operation, options):
        self.calls.append((operation, options))
        if self.error is not None:
            raise self.error

    def name(self):
        return u"recording"

    def create(self, options):
        self._record(u"create", options)

    def format(self, options):
        self._record(u"format", options)

    def destroy(self, options):
        self._record(u"destroy", options)

    def exists(self, options):
        self._record(u"exists", options)
        return options.volume.name in self.volumes

    def list(self, options):
        self._record(u"list", options)
        return [Volume(name=name) for name in self.volumes]

    def validate(self, options):
        self._record(u"validate", options)

    def mount(self, options):
        self._record(u"mount", options)
        return Mount(device=u"/dev/xvdf", path=self.mount_path(options),
                     volume=options.volume, dev_major=202, dev_minor=80)

    def mount_path(self, options):
        return self.mountpath + u"/" + options.volume.name.replace(u"/", u".")

    def unmount(self, options):
        self._record(u"unmount", options)

    def mounted(self, timeout):
        return []


class ConfigurationTests(TestCase):
    """
    Tests for ``get_configuration`` and ``driver_from_configuration``.
    """
    def write_config(self, content):
        path = self.make_temporary_path()
        path.setContent(content)
        return path

    def test_minimal(self):
        """
        Only the version is required; the mount directory and AWS settings
        get defaults.
        """
        path = self.write_config(b"version: 1\n")
        self.assertEqual(
            {u"version": 1, u"mountpath": DEFAULT_MOUNTPATH, u"aws": {}},
            get_configuration(path),
        )

    def test_full(self):
        """
        The mount directory and AWS settings are read from the file and used
        to build the driver.
        """
        path = self.write_config(yaml.safe_dump({
            u"version": 1,
            u"mountpath": u"/srv/volumes",
            u"aws": {u"access_key_id": u"AKIDEXAMPLE",
                     u"secret_access_key": u"secret",
                     u"max_attempts": 5},
        }).encode("utf-8"))
        driver = driver_from_configuration(get_configuration(path))
        self.assertEqual(
            (True, u"/srv/volumes", u"AKIDEXAMPLE", 5),
            (isinstance(driver, EBSDriver), driver.mountpath,
             driver.ec2.access_key_id, driver.ec2.max_attempts),
        )

    def test_missing(self):
        """
        A missing file raises ``ConfigurationError``.
        """
        self.assertRaises(
            ConfigurationError, get_configuration, self.make_temporary_path())

    def test_unparseable(self):
        """
        A file which is not YAML raises ``ConfigurationError``.
        """
        self.assertRaises(
            ConfigurationError,
            get_configuration, self.write_config(b"version: [1\n"))

    def test_invalid(self):
        """
        Unknown versions, unknown keys and files without a mapping raise
        ``ConfigurationError``.
        """
        for content in [b"version: 2\n", b"version: 1\ncolour: blue\n",
                        b"version: 1\naws:\n  region: eu-west-1\n",
                        b"version: 1\naws:\n  max_attempts: 0\n", b""]:
            self.assertRaises(
                ConfigurationError,
                get_configuration, self.write_config(content))

    def test_usage_error(self):
        """
        ``ConfigurationError`` is reported like any other usage error.
        """
        self.assertTrue(issubclass(ConfigurationError, UsageError))


class EBSOptionsTests(TestCase):
    """
    Tests for ``EBSOptions``.
    """
    def parse(self, arguments):
        options = EBSOptions(sys_module=FakeSysModule())
        options.parseOptions(arguments)
        return options

    def test_command_required(self):
        """
        A command must be given.
        """
        self.assertRaises(UsageError, self.parse, [])

    def test_region_required(self):
        """
        Volume commands require a region.
        """
        self.assertRaises(UsageError, self.parse, [u"create", u"tenant/vol"])

    def test_create(self):
        """
        ``create`` turns its options into the volume's size and parameters.
        """
        options = self.parse([
            u"create", u"--region", u"eu-central-1", u"--size", u"4GiB",
            u"--volume-type", u"io1", u"--iops", u"200",
            u"--timeout", u"30", u"tenant/volume",
        ])
        self.assertEqual(
            (4 * GIB,
             {u"region": u"eu-central-1", u"volumetype": u"io1",
              u"iops": u"200"},
             timedelta(seconds=30)),
            (options.subOptions.driver_options().volume.size,
             dict(options.subOptions.driver_options().volume.params),
             options.subOptions.driver_options().timeout),
        )

    def test_create_default_size(self):
        """
        Volumes are 10 GiB unless a size is given.
        """
        options = self.parse(
            [u"create", u"--region", u"eu-central-1", u"tenant/volume"])
        self.assertEqual(
            10 * GIB, options.subOptions.driver_options().volume.size)

    def test_invalid_size(self):
        """
        An unparseable size is a usage error.
        """
        self.assertRaises(
            UsageError, self.parse,
            [u"create", u"--region", u"r", u"--size", u"lots", u"t/v"])

    def test_format_command(self):
        """
        ``format`` passes the create command to the driver.
        """
        options = self.parse([
            u"format", u"--region", u"eu-central-1",
            u"--create-command", u"mkfs.xfs %", u"tenant/volume",
        ])
        self.assertEqual(
            u"mkfs.xfs %",
            options.subOptions.driver_options().fs_options.create_command)

    def test_config(self):
        """
        ``--config`` names the configuration file.
        """
        options = self.parse([
            u"--config", u"/etc/other.yml", u"list", u"--region", u"r"])
        self.assertEqual(u"/etc/other.yml", options[u"config"].path)


class EBSScriptTests(TestCase):
    """
    Tests for ``EBSScript`` run by ``ScriptRunner``.
    """
    def setUp(self):
        super(EBSScriptTests, self).setUp()
        self.config = self.make_temporary_path()
        self.config.setContent(b"version: 1\nmountpath: /mnt/recorded\n")
        self.driver = RecordingDriver(volumes=[u"tenant/volume"])
        self.configurations = []

    def driver_factory(self, configuration):
        self.configurations.append(configuration)
        return self.driver

    def run_script(self, *arguments):
        """
        :return: The ``FakeSysModule`` the script ran with.
        """
        sys_module = FakeSysModule(
            argv=[u"volplugin-ebs", u"--config", self.config.path] +
            list(arguments))
        runner = ScriptRunner(
            script=EBSScript(driver_factory=self.driver_factory,
                             sys_module=sys_module),
            options=EBSOptions(sys_module=sys_module),
            logging=False,
            sys_module=sys_module,
        )
        runner.main()
        return sys_module

    def test_configuration(self):
        """
        The driver is built from the configuration file.
        """
        self.run_script(u"list", u"--region", u"eu-central-1")
        self.assertEqual(
            [{u"version": 1, u"mountpath": u"/mnt/recorded", u"aws": {}}],
            self.configurations)

    def test_create(self):
        """
        ``create`` creates the named volume.
        """
        self.run_script(u"create", u"--region", u"eu-central-1",
                        u"tenant/volume")
        [(operation, options)] = self.driver.calls
        self.assertEqual(
            (u"create", u"tenant/volume", u"eu-central-1"),
            (operation, options.volume.name,
             options.volume.params[u"region"]),
        )

    def test_exists(self):
        """
        ``exists`` prints ``true`` or ``false``.
        """
        present = self.run_script(
            u"exists", u"--region", u"r", u"tenant/volume")
        missing = self.run_script(
            u"exists", u"--region", u"r", u"tenant/other")
        self.assertEqual(
            (u"true\n", u"false\n"),
            (present.stdout.getvalue(), missing.stdout.getvalue()))

    def test_list(self):
        """
        ``list`` prints one volume name per line.
        """
        self.driver.volumes.append(u"tenant/other")
        sys_module = self.run_script(u"list", u"--region", u"r")
        self.assertEqual(
            u"tenant/volume\ntenant/other\n", sys_module.stdout.getvalue())

    def test_mount(self):
        """
        ``mount`` prints the mount directory, device and device numbers.
        """
        sys_module = self.run_script(
            u"mount", u"--region", u"r", u"--filesystem", u"xfs",
            u"tenant/volume")
        [(operation, options)] = self.driver.calls
        self.assertEqual(
            (u"xfs", u"/mnt/recorded/tenant.volume /dev/xvdf 202:80\n"),
            (options.fs_options.type, sys_module.stdout.getvalue()))

    def test_mount_path(self):
        """
        ``mount-path`` prints where the volume would be mounted.
        """
        sys_module = self.run_script(u"mount-path", u"tenant/volume")
        self.assertEqual(
            u"/mnt/recorded/tenant.volume\n", sys_module.stdout.getvalue())

    def test_unmount_destroy_validate(self):
        """
        ``unmount``, ``destroy`` and ``validate`` run the operation of the
        same name.
        """
        for command in [u"unmount", u"destroy", u"validate"]:
            self.run_script(command, u"--region", u"r", u"tenant/volume")
        self.assertEqual(
            [u"unmount", u"destroy", u"validate"],
            [operation for operation, _ in self.driver.calls])

    def test_failure(self):
        """
        A failed operation is reported on standard error with exit status 1.
        """
        self.driver.error = StepFailed(
            u"attach volume", u"tenant/volume", Exception(u"boom"))
        sys_module = FakeSysModule(
            argv=[u"volplugin-ebs", u"--config", self.config.path,
                  u"format", u"--region", u"r", u"tenant/volume"])
        runner = ScriptRunner(
            script=EBSScript(driver_factory=self.driver_factory,
                             sys_module=sys_module),
            options=EBSOptions(sys_module=sys_module),
            logging=False,
            sys_module=sys_module,
        )
        e = self.assertRaises(SystemExit, runner.main)
        self.assertEqual(
            (1, u"ERROR: failed to attach volume for volume 'tenant/volume': "
                u"boom\n"),
            (e.code, sys_module.stderr.getvalue()),
        )

    def test_bad_configuration(self):
        """
        An invalid configuration file is reported on standard error with exit
        status 1.
        """
        self.config.setContent(b"version: 7\n")
        e = self.assertRaises(
            SystemExit, self.run_script, u"list", u"--region", u"r")
        self.assertEqual(1, e.code)
