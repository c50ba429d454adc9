"""sitesync — keep a live site's file tree in step with a remote repository.

Deploy a branch or commit, roll back to an earlier deployment, or restore a
snapshot taken before a risky operation.
"""

__version__ = "0.1.0"
