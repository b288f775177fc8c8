"""GitOps promotion — structural version rewrites in the config repository.

Modules
-------
descriptor
    Path-addressed scalar edits of YAML descriptors that leave every other
    byte untouched.
git
    ``GitWorkspace`` — a clone of one branch with fetch/reset/commit/push.
mutator
    ``ConfigRepoMutator.promote`` — the commit-and-push protocol with
    optimistic retry on a moving branch.
"""

from harborline.gitops.descriptor import DescriptorEditError, FieldEdit, apply_edits, read_field
from harborline.gitops.mutator import ConfigRepoMutator

__all__ = [
    "ConfigRepoMutator",
    "DescriptorEditError",
    "FieldEdit",
    "apply_edits",
    "read_field",
]
