# -*- test-case-name: volplugin.storage.backend.ebs.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The ``volplugin-ebs`` command line tool, which runs single EBS driver
operations.
"""

from datetime import timedelta
import sys

from bitmath import parse_string

from jsonschema import Draft4Validator, FormatChecker
from jsonschema.exceptions import ValidationError

import yaml

from twisted.python.filepath import FilePath
from twisted.python.usage import Options, UsageError

from zope.interface import implementer

from ....common.script import (
    ICommandLineScript, ScriptRunner, standard_options,
)
from ...driver import DriverOptions, FSOptions, ListOptions, Volume
from .. import backend_by_name
from ._client import EC2Configuration
from .driver import BACKEND_NAME, DEFAULT_MOUNTPATH

DEFAULT_CONFIG_PATH = FilePath(u"/etc/volplugin/ebs.yml")
DEFAULT_TIMEOUT = 60.0
DEFAULT_SIZE = u"10GiB"


class ConfigurationError(UsageError):
    """
    The configuration file is missing, unparseable or invalid.
    """


def validate_configuration(configuration):
    """
    Validate a provided configuration.

    :param dict configuration: A desired configuration for the tool.

    :raises: jsonschema.ValidationError if the configuration is invalid.
    """
    schema = {
        "$schema": "http://json-schema.org/draft-04/schema#",
        "type": "object",
        "required": ["version"],
        "additionalProperties": False,
        "properties": {
            "version": {
                "type": "number",
                "maximum": 1,
                "minimum": 1,
            },
            "mountpath": {
                "type": "string",
                "minLength": 1,
            },
            "aws": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "access_key_id": {"type": "string"},
                    "secret_access_key": {"type": "string"},
                    "session_token": {"type": "string"},
                    "max_attempts": {"type": "integer", "minimum": 1},
                },
            },
        }
    }

    v = Draft4Validator(schema, format_checker=FormatChecker())
    v.validate(configuration)


def get_configuration(config_path):
    """
    Load and validate the configuration in ``config_path``.

    :param FilePath config_path: The YAML configuration file.

    :raise ConfigurationError: If it cannot be loaded or is invalid.
    :return: A ``dict`` with ``mountpath`` and ``aws`` always present.
    """
    try:
        content = config_path.getContent()
    except (IOError, OSError) as e:
        raise ConfigurationError(
            u"Configuration error: {}: {}".format(
                config_path.path, e.strerror))
    try:
        configuration = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(u"Configuration error: {}".format(e))
    try:
        validate_configuration(configuration=configuration)
    except ValidationError as e:
        raise ConfigurationError(u"Configuration error: {}".format(e.message))

    configuration.setdefault(u"mountpath", DEFAULT_MOUNTPATH)
    configuration.setdefault(u"aws", {})
    return configuration


def driver_from_configuration(configuration):
    """
    :param dict configuration: As returned by ``get_configuration``.
    :return: An ``EBSDriver`` providing both driver interfaces.
    """
    backend = backend_by_name(BACKEND_NAME)
    return backend.mount_factory(
        configuration[u"mountpath"],
        ec2=EC2Configuration(**configuration[u"aws"]),
    )


def _size(value):
    """
    Parse a size such as ``10GiB`` into bytes.
    """
    return int(parse_string(value).to_Byte().value)


class _RegionOptions(Options):
    optParameters = [
        ["region", "r", None, "The AWS region of the volume."],
    ]

    def postOptions(self):
        if self["region"] is None:
            raise UsageError(u"--region is required")

    def params(self):
        return {u"region": self["region"]}


class _VolumeOptions(_RegionOptions):
    """
    Options naming a single volume.
    """
    optParameters = [
        ["timeout", "t", DEFAULT_TIMEOUT,
         "Seconds to wait for each remote state change.", float],
    ]

    def parseArgs(self, name):
        self["name"] = name

    def fs_options(self):
        return FSOptions()

    def volume(self):
        return Volume(name=self["name"], params=self.params())

    def driver_options(self):
        return DriverOptions(
            volume=self.volume(),
            fs_options=self.fs_options(),
            timeout=timedelta(seconds=self["timeout"]),
        )


class CreateOptions(_VolumeOptions):
    """
    Create a volume: volplugin-ebs create <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    optParameters = [
        ["size", "s", DEFAULT_SIZE, "Size of the volume, e.g. 10GiB."],
        ["availability-zone", "z", None,
         "Availability zone; defaults to that of this instance."],
        ["volume-type", None, None,
         "EBS volume type: standard, io1, io2, gp2, gp3, st1 or sc1."],
        ["iops", None, None, "Provisioned IOPS."],
    ]

    def postOptions(self):
        _VolumeOptions.postOptions(self)
        try:
            self["size"] = _size(self["size"])
        except ValueError:
            raise UsageError(u"Invalid size: {}".format(self["size"]))

    def params(self):
        params = _VolumeOptions.params(self)
        for option, param in [("availability-zone", u"availabilityzone"),
                              ("volume-type", u"volumetype"),
                              ("iops", u"iops")]:
            if self[option] is not None:
                params[param] = self[option]
        return params

    def volume(self):
        return Volume(name=self["name"], size=self["size"],
                      params=self.params())

    def run(self, driver, stdout):
        driver.create(self.driver_options())


class FormatOptions(_VolumeOptions):
    """
    Create a filesystem on a volume: volplugin-ebs format <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    optParameters = [
        ["create-command", None, FSOptions().create_command,
         "Format command; % is replaced with the device and %% is a "
         "literal %."],
    ]

    def fs_options(self):
        return FSOptions(create_command=self["create-command"])

    def run(self, driver, stdout):
        driver.format(self.driver_options())


class DestroyOptions(_VolumeOptions):
    """
    Destroy a volume: volplugin-ebs destroy <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    def run(self, driver, stdout):
        driver.destroy(self.driver_options())


class ExistsOptions(_VolumeOptions):
    """
    Report whether a volume exists: volplugin-ebs exists <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    def run(self, driver, stdout):
        exists = driver.exists(self.driver_options())
        stdout.write(u"{}\n".format(u"true" if exists else u"false"))


class ListVolumesOptions(_RegionOptions):
    """
    List the volumes in a region: volplugin-ebs list --region <region>
    """
    def run(self, driver, stdout):
        for volume in driver.list(ListOptions(params=self.params())):
            stdout.write(volume.name + u"\n")


class MountOptions(_VolumeOptions):
    """
    Attach and mount a volume: volplugin-ebs mount <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    optParameters = [
        ["filesystem", "f", FSOptions().type, "The filesystem type."],
    ]

    def fs_options(self):
        return FSOptions(type=self["filesystem"])

    def run(self, driver, stdout):
        mount = driver.mount(self.driver_options())
        stdout.write(u"{} {} {}:{}\n".format(
            mount.path, mount.device, mount.dev_major, mount.dev_minor))


class UnmountOptions(_VolumeOptions):
    """
    Unmount and detach a volume: volplugin-ebs unmount <tenant/volume>
    """
    synopsis = "[options] <tenant/volume>"

    def run(self, driver, stdout):
        driver.unmount(self.driver_options())


class MountPathOptions(Options):
    """
    Print where a volume is mounted: volplugin-ebs mount-path <tenant/volume>
    """
    synopsis = "<tenant/volume>"

    def parseArgs(self, name):
        self["name"] = name

    def run(self, driver, stdout):
        path = driver.mount_path(
            DriverOptions(volume=Volume(name=self["name"])))
        stdout.write(path + u"\n")


class ValidateOptions(CreateOptions):
    """
    Check the options for a volume without contacting AWS.
    """

    def run(self, driver, stdout):
        driver.validate(self.driver_options())


@standard_options
class EBSOptions(Options):
    """
    Command line options for ``volplugin-ebs``.
    """
    longdesc = """\
    volplugin-ebs creates, formats, mounts, unmounts and destroys EBS volumes
    named by a tenant/volume tag.
    """

    synopsis = "Usage: volplugin-ebs [OPTIONS] <command> [command options]"

    optParameters = [
        ["config", "c", None,
         "The configuration file. Defaults to {} if it exists.".format(
             DEFAULT_CONFIG_PATH.path)],
    ]

    subCommands = [
        ["create", None, CreateOptions, "Create a volume."],
        ["format", None, FormatOptions, "Create a filesystem on a volume."],
        ["destroy", None, DestroyOptions, "Destroy a volume."],
        ["exists", None, ExistsOptions, "Report whether a volume exists."],
        ["list", None, ListVolumesOptions, "List volumes."],
        ["mount", None, MountOptions, "Attach and mount a volume."],
        ["unmount", None, UnmountOptions, "Unmount and detach a volume."],
        ["mount-path", None, MountPathOptions,
         "Print the directory a volume is mounted on."],
        ["validate", None, ValidateOptions,
         "Check volume options without contacting AWS."],
    ]

    def postOptions(self):
        if self.subCommand is None:
            raise UsageError(u"A command is required.")
        if self["config"] is not None:
            self["config"] = FilePath(self["config"])


@implementer(ICommandLineScript)
class EBSScript(object):
    """
    Run the chosen ``volplugin-ebs`` command.

    :ivar driver_factory: Called with the loaded configuration to return the
        driver commands are run against.
    """
    def __init__(self, driver_factory=driver_from_configuration,
                 sys_module=None):
        self.driver_factory = driver_factory
        if sys_module is None:
            sys_module = sys
        self.sys_module = sys_module

    def main(self, options):
        config_path = options["config"]
        if config_path is None:
            if DEFAULT_CONFIG_PATH.exists():
                configuration = get_configuration(DEFAULT_CONFIG_PATH)
            else:
                configuration = {u"mountpath": DEFAULT_MOUNTPATH, u"aws": {}}
        else:
            configuration = get_configuration(config_path)
        driver = self.driver_factory(configuration)
        options.subOptions.run(driver, self.sys_module.stdout)


def volplugin_ebs_main():
    return ScriptRunner(
        script=EBSScript(),
        options=EBSOptions(),
    ).main()
