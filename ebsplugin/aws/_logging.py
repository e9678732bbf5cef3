# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Eliot log events for the EC2 and ECS control planes.
"""

from eliot import Field, ActionType, MessageType

# An OPERATION is a list of:
# API name, positional arguments, keyword arguments.
OPERATION = Field.for_types(
    "operation", [list],
    "The AWS API operation being executed, "
    "along with positional and keyword arguments.")

AWS_ACTION = ActionType(
    "ebsplugin:aws:call",
    [OPERATION],
    [],
    "An AWS API operation is executing.")

BOTO_LOG_HEADER = "ebsplugin:aws:boto_logs"

VOLUME_ID = Field.for_types(
    "volume_id", [str],
    "The identifier of volume of interest.")
INSTANCE_ID = Field.for_types(
    "instance_id", [str, None],
    "The EC2 instance of interest.")
STATE = Field.for_types(
    "state", [str],
    "The attachment state derived from the volume's EC2 description.")
TARGET_STATES = Field.for_types(
    "target_states", [list],
    "The attachment states being waited for.")

ENSURE_ATTACHED = ActionType(
    "ebsplugin:aws:ensure_attached",
    [VOLUME_ID, INSTANCE_ID],
    [],
    "Make sure a volume is attached to the local instance.")

VOLUME_STATE = MessageType(
    "ebsplugin:aws:volume_state",
    [VOLUME_ID, STATE, INSTANCE_ID],
    "The current attachment state of a volume.")

WAITING_FOR_VOLUME_STATE = MessageType(
    "ebsplugin:aws:volume_state_wait",
    [VOLUME_ID, STATE, TARGET_STATES],
    "Waiting for a volume to reach one of the target states.")

DETACHING_FROM_OTHER = MessageType(
    "ebsplugin:aws:detaching_from_other",
    [VOLUME_ID, INSTANCE_ID],
    "The volume is attached elsewhere and unused; detaching it.")

DEVICES = Field.for_types(
    "devices", [list],
    "List of devices currently in use by the compute instance.")
DEVICE = Field.for_types(
    "device", [str],
    "The device name requested for an attachment.")
NO_AVAILABLE_DEVICE = MessageType(
    "ebsplugin:aws:no_available_device",
    [DEVICES],
    "Every reserved device slot is occupied.")
IN_USE_DEVICES = MessageType(
    "ebsplugin:aws:in_use_devices",
    [DEVICES],
    "Log current devices.")
ATTACHING = MessageType(
    "ebsplugin:aws:attaching",
    [VOLUME_ID, INSTANCE_ID, DEVICE],
    "Requesting the attachment of a volume.")

VOLUME_NAME = Field.for_types(
    "volume_name", [str],
    "The volume name searched for in task definitions.")
ZONE = Field.for_types(
    "zone", [str],
    "The availability zone being scanned.")
COUNT = Field.for_types(
    "count", [int],
    "The number of task definitions with live tasks found declaring the "
    "volume.")
LIVE_TASKS = Field.for_types(
    "live_tasks", [int],
    "The number of live tasks of a task definition.")
IN_USE = Field.for_types(
    "in_use", [bool],
    "Whether the volume is considered in use.")
CLUSTER = Field.for_types(
    "cluster", [str],
    "The ARN of an ECS cluster.")
TASK_DEFINITION = Field.for_types(
    "task_definition", [str],
    "The ARN of an ECS task definition.")

SCAN_FOR_REFERENCES = ActionType(
    "ebsplugin:aws:scan_for_references",
    [VOLUME_NAME, ZONE],
    [COUNT],
    "Count the live ECS tasks in a zone which reference a volume.")

SCAN_CLUSTER = ActionType(
    "ebsplugin:aws:scan_cluster",
    [CLUSTER],
    [COUNT],
    "Count the live ECS tasks in one cluster which reference a volume.")

CLUSTER_SCAN_FAILED = MessageType(
    "ebsplugin:aws:cluster_scan_failed",
    [CLUSTER],
    "Scanning a cluster failed; it contributes nothing to the count.")

SCAN_SHORT_CIRCUITED = MessageType(
    "ebsplugin:aws:scan_short_circuited",
    [CLUSTER],
    "Enough references were found elsewhere; the cluster scan stopped.")

VOLUME_REFERENCED = MessageType(
    "ebsplugin:aws:volume_referenced",
    [CLUSTER, TASK_DEFINITION, LIVE_TASKS],
    "Live tasks of a task definition declaring the volume were found.")

IN_USE_DECISION = MessageType(
    "ebsplugin:aws:in_use_decision",
    [VOLUME_NAME, COUNT, IN_USE],
    "Decide whether the volume may be detached from another instance.")

METADATA_PATH = Field.for_types(
    "path", [str],
    "The instance metadata path being fetched.")
FETCH_METADATA = ActionType(
    "ebsplugin:aws:fetch_metadata",
    [METADATA_PATH],
    [],
    "Fetch a value from the EC2 instance metadata service.")
