"""Stack model: lookups and mutations over the stack ordering.

Everything here is pure. Mutations return new ``Stack``/``StackboiConfig``
objects and leave persistence to the config store.
"""

import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError

from ..config.models import Stack, StackboiConfig
from ..errors import BranchIsBaseBranch, BranchNotInAnyStack, InvalidStack

logger = logging.getLogger(__name__)

def find_stack_by_branch(config: StackboiConfig, branch_name: str) -> Optional[Stack]:
    """Find the stack a branch belongs to, either as a member or as its base."""
    for stack in config.stacks:
        if branch_name in stack.branches or stack.base_branch == branch_name:
            return stack
    return None

def require_stack_branch(config: StackboiConfig, branch_name: str) -> Stack:
    """Find the stack containing branch_name as a stacked (non-base) branch.

    Raises:
        BranchNotInAnyStack: no stack knows the branch.
        BranchIsBaseBranch: the branch is the root of its stack.
    """
    # A branch can be the base of one stack and a member of another
    for stack in config.stacks:
        if branch_name in stack.branches:
            return stack
    stack = find_stack_by_branch(config, branch_name)
    if stack is None:
        raise BranchNotInAnyStack(branch_name)
    raise BranchIsBaseBranch(branch_name, stack.name)

def _index_of(stack: Stack, branch_name: str) -> int:
    if branch_name == stack.base_branch:
        raise BranchIsBaseBranch(branch_name, stack.name)
    try:
        return stack.branches.index(branch_name)
    except ValueError:
        raise BranchNotInAnyStack(branch_name) from None

def branch_position(stack: Stack, branch_name: str) -> Tuple[int, int]:
    """Get branch position in stack (1-indexed) and total count."""
    return _index_of(stack, branch_name) + 1, len(stack.branches)

def parent_of(stack: Stack, branch_name: str) -> str:
    """Get the branch a stacked branch was forked from."""
    index = _index_of(stack, branch_name)
    if index == 0:
        return stack.base_branch
    return stack.branches[index - 1]

def children_of(stack: Stack, branch_name: str) -> List[str]:
    """Branches stacked above branch_name, nearest first."""
    return list(stack.branches[_index_of(stack, branch_name) + 1:])

def _build(name: str, base_branch: str, branches: List[str]) -> Stack:
    try:
        return Stack(name=name, base_branch=base_branch, branches=branches)
    except ValidationError as e:
        raise InvalidStack(str(e)) from e

def create_stack(config: StackboiConfig, name: str, base_branch: str, first_branch: str) -> StackboiConfig:
    """Start a new stack rooted at base_branch."""
    if any(s.name == name for s in config.stacks):
        raise InvalidStack(f"Stack '{name}' already exists")
    for stack in config.stacks:
        if first_branch in stack.branches:
            raise InvalidStack(f"Branch '{first_branch}' already belongs to stack '{stack.name}'")
    stack = _build(name, base_branch, [first_branch])
    logger.debug(f"Created stack {name}: {base_branch} -> {first_branch}")
    return config.model_copy(update={'stacks': [*config.stacks, stack]})

def append_branch(config: StackboiConfig, stack_name: str, branch_name: str) -> StackboiConfig:
    """Add branch_name on top of the named stack."""
    for stack in config.stacks:
        if branch_name in stack.branches:
            raise InvalidStack(f"Branch '{branch_name}' already belongs to stack '{stack.name}'")
    stacks: List[Stack] = []
    found = False
    for stack in config.stacks:
        if stack.name == stack_name:
            stack = _build(stack.name, stack.base_branch, [*stack.branches, branch_name])
            found = True
        stacks.append(stack)
    if not found:
        raise InvalidStack(f"No stack named '{stack_name}'")
    return config.model_copy(update={'stacks': stacks})

def remove_branch(config: StackboiConfig, stack_name: str, branch_name: str) -> StackboiConfig:
    """Drop a (merged) branch; later branches shift down one position.

    The stack itself is dropped once its last branch is removed.
    """
    stacks: List[Stack] = []
    found = False
    for stack in config.stacks:
        if stack.name == stack_name:
            _index_of(stack, branch_name)
            found = True
            remaining = [b for b in stack.branches if b != branch_name]
            if not remaining:
                logger.info(f"Stack {stack_name} is empty, removing it")
                continue
            stack = _build(stack.name, stack.base_branch, remaining)
        stacks.append(stack)
    if not found:
        raise InvalidStack(f"No stack named '{stack_name}'")
    return config.model_copy(update={'stacks': stacks})

def get_stack(config: StackboiConfig, stack_name: str) -> Optional[Stack]:
    for stack in config.stacks:
        if stack.name == stack_name:
            return stack
    return None
