# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Eliot log events for the local device and filesystem handling.
"""

from eliot import Field, ActionType, MessageType

VOLUME_ID = Field.for_types(
    "volume_id", [str],
    "The identifier of the volume being looked for.")
SERIAL = Field.for_types(
    "serial", [str],
    "The fragment of a device serial number identifying the volume.")
DEVICE_PATH = Field(
    "device", lambda path: path.path,
    "The path of a block device.")
MOUNTPOINT = Field(
    "mountpoint", lambda path: path.path,
    "The path a block device is mounted at.")
OLD_MOUNTPOINT = Field(
    "old_mountpoint", lambda path: path.path,
    "The path a block device was mounted at before being moved.")
FILESYSTEM_TYPE = Field.for_types(
    "filesystem_type", [str, None],
    "The type of filesystem found on a block device.")
DEVICES = Field.for_types(
    "devices", [list],
    "The block devices whose serial numbers were read.")

FIND_DEVICE = ActionType(
    "ebsplugin:node:find_device",
    [VOLUME_ID, SERIAL],
    [DEVICE_PATH],
    "Look for the local block device of an attached volume.")

DEVICE_NOT_YET_VISIBLE = MessageType(
    "ebsplugin:node:device_not_yet_visible",
    [SERIAL, DEVICES],
    "No block device has the volume's serial number yet.")

PROVISION_FILESYSTEM = ActionType(
    "ebsplugin:node:provision_filesystem",
    [DEVICE_PATH, MOUNTPOINT],
    [],
    "Make sure a block device has a filesystem mounted at a mountpoint.")

FILESYSTEM_DETECTED = MessageType(
    "ebsplugin:node:filesystem_detected",
    [DEVICE_PATH, FILESYSTEM_TYPE],
    "The filesystem found on a block device.")

MOVING_MOUNT = MessageType(
    "ebsplugin:node:moving_mount",
    [DEVICE_PATH, OLD_MOUNTPOINT, MOUNTPOINT],
    "A block device is mounted somewhere else and is being moved.")

ALREADY_MOUNTED = MessageType(
    "ebsplugin:node:already_mounted",
    [DEVICE_PATH, MOUNTPOINT],
    "The block device is already mounted at the mountpoint.")
