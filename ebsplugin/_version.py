# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The version of the EBS Docker volume plugin.

Kept free of imports so packaging tools can read it without installing
dependencies.
"""

__version__ = "1.2.0"
