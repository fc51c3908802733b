"""
Description:
    NUTS trajectory building: recursive doubling, U-turn test, slice validity.
    USE THE CORRECT ENVIRONMENT:  hmcnuts

Author: John Gallagher
Created: 2026-10-17
Last Modified: 2026-10-17
Version: 0.2

Follows the slice sampling NUTS of Hoffman & Gelman (2014), Alg. 3, with the
efficient (progressive) candidate selection. Control flow runs in python;
each leaf costs one jit compiled leapfrog call.

A stopped subtree is returned as is: nothing past a divergence or a U-turn is
integrated, and an enclosing tree never builds its second half.
"""
import math
from typing import Callable, Tuple
import jax
import jax.numpy as jnp
import jax.random as jr
from jax.flatten_util import ravel_pytree

from hmcnuts.datatypes import IntegratorState, TreeState

Leapfrog = Callable[[IntegratorState, float], Tuple[IntegratorState, float]]

@jax.jit
def _u_turn_flat(q_minus, q_plus, p_minus, p_plus):
    dq = q_plus - q_minus
    return (jnp.dot(dq, p_plus) < 0) | (jnp.dot(dq, p_minus) < 0)

def is_u_turn(q_minus, q_plus, p_minus, p_plus) -> bool:
    """
    No-U-Turn criterion between the two ends of a trajectory.

    dq = q_plus - q_minus, summed over every component of every variable.
    U-turn iff dq.p_plus < 0 or dq.p_minus < 0.

    Arguments may be scalars, arrays or name-keyed mappings with the same
    keys.

    Example:
        >>> is_u_turn(0.0, 1.0, 1.0, 1.0)
        False
        >>> is_u_turn(0.0, 1.0, 1.0, -1.0)
        True
    """
    flat = [ravel_pytree(x)[0] for x in (q_minus, q_plus, p_minus, p_plus)]
    return bool(_u_turn_flat(*flat))

def _edges_u_turn(left: IntegratorState, right: IntegratorState) -> bool:
    return bool(_u_turn_flat(left.q, right.q, left.p, right.p))

def build_leaf(
        leapfrog: Leapfrog,
        state: IntegratorState,
        log_u: float,
        H0: float,
        direction: int,
        step_size: float,
        delta_max: float = 1000.0
) -> TreeState:
    """
    Depth 0 tree: one leapfrog step of size direction * step_size.

    Valid iff log_u <= -H, i.e. u <= exp(-H) for the slice u ~ U(0, exp(-H0)).
    Divergent iff H is not finite or H - H0 > delta_max. Divergence stops.
    """
    state_new, H = leapfrog(state, direction * step_size)
    H = float(H)

    diverging = not math.isfinite(H) or (H - H0) > delta_max
    if diverging:
        valid = False
        alpha = 0.0
    else:
        valid = log_u <= -H
        alpha = math.exp(min(0.0, H0 - H))

    return TreeState(
        left=state_new,
        right=state_new,
        proposal=state_new,
        n_valid=int(valid),
        stop=diverging,
        diverging=diverging,
        alpha=alpha,
        n_alpha=1,
        n_steps=1,
    )

def merge_trees(
        tree1: TreeState,
        tree2: TreeState,
        direction: int,
        key: jax.random.PRNGKey
) -> TreeState:
    """
    Join tree2 onto the direction end of tree1.

    The candidate moves to tree2's with probability
    n_valid2 / max(n_valid1 + n_valid2, 1), which keeps it a uniform draw over
    the valid leaves of the union.
    """
    if direction == 1:
        left, right = tree1.left, tree2.right
    else:
        left, right = tree2.left, tree1.right

    n_valid = tree1.n_valid + tree2.n_valid
    proposal = tree1.proposal
    if tree2.n_valid > 0:
        if float(jr.uniform(key)) < tree2.n_valid / max(n_valid, 1):
            proposal = tree2.proposal

    u_turn = _edges_u_turn(left, right)

    return TreeState(
        left=left,
        right=right,
        proposal=proposal,
        n_valid=n_valid,
        stop=tree2.stop or u_turn,
        diverging=tree2.diverging,
        alpha=tree1.alpha + tree2.alpha,
        n_alpha=tree1.n_alpha + tree2.n_alpha,
        n_steps=tree1.n_steps + tree2.n_steps,
    )

def build_tree(
        leapfrog: Leapfrog,
        state: IntegratorState,
        log_u: float,
        H0: float,
        direction: int,
        depth: int,
        step_size: float,
        key: jax.random.PRNGKey,
        delta_max: float = 1000.0
) -> TreeState:
    """
    Build a subtree of 2**depth leapfrog steps from state in direction.

    Args:
        leapfrog: Single step returning (state, energy), see gen_leapfrog
        state: Edge of the trajectory to extend
        log_u: Log of the slice variable
        H0: Energy at the start of the outer iteration
        direction: +1 or -1
        depth: Subtree depth
        step_size: Unsigned step size
        key: Random key for candidate selection
        delta_max: Energy error threshold for divergence

    Returns:
        TreeState of the subtree
    """
    if depth == 0:
        return build_leaf(leapfrog, state, log_u, H0, direction, step_size, delta_max)

    key_first, key_second, key_select = jr.split(key, 3)
    tree1 = build_tree(leapfrog, state, log_u, H0, direction, depth - 1, step_size,
                       key_first, delta_max)
    if tree1.stop:
        return tree1

    edge = tree1.right if direction == 1 else tree1.left
    tree2 = build_tree(leapfrog, edge, log_u, H0, direction, depth - 1, step_size,
                       key_second, delta_max)
    return merge_trees(tree1, tree2, direction, key_select)

def build_trajectory(
        leapfrog: Leapfrog,
        state: IntegratorState,
        log_u: float,
        H0: float,
        step_size: float,
        key: jax.random.PRNGKey,
        max_tree_depth: int = 10,
        delta_max: float = 1000.0
) -> Tuple[TreeState, int]:
    """
    NUTS doubling loop from state (momentum already drawn).

    Each round picks a direction uniformly, builds a subtree as deep as the
    trajectory so far from the matching edge, and moves the candidate to the
    subtree's with probability n_valid_new / n_valid_so_far (capped at 1)
    unless the subtree stopped. Ends on a stopped subtree, a U-turn of the
    outer edges, or max_tree_depth doublings, so at most
    2**max_tree_depth - 1 leapfrog steps are taken.

    Returns:
        (trajectory, depth): accumulated TreeState whose proposal is the next
        state, and the number of doublings performed
    """
    left = right = proposal = state
    n_valid = 1
    alpha = 0.0
    n_alpha = 0
    n_steps = 0
    stop = False
    diverging = False
    depth = 0

    while not stop and depth < max_tree_depth:
        key, key_dir, key_tree, key_select = jr.split(key, 4)
        direction = 1 if bool(jr.bernoulli(key_dir)) else -1

        if direction == 1:
            tree = build_tree(leapfrog, right, log_u, H0, 1, depth, step_size,
                              key_tree, delta_max)
            right = tree.right
        else:
            tree = build_tree(leapfrog, left, log_u, H0, -1, depth, step_size,
                              key_tree, delta_max)
            left = tree.left

        if not tree.stop:
            if float(jr.uniform(key_select)) < tree.n_valid / n_valid:
                proposal = tree.proposal

        n_valid += tree.n_valid
        alpha += tree.alpha
        n_alpha += tree.n_alpha
        n_steps += tree.n_steps
        diverging = diverging or tree.diverging
        stop = tree.stop or _edges_u_turn(left, right)
        depth += 1

    trajectory = TreeState(
        left=left,
        right=right,
        proposal=proposal,
        n_valid=n_valid,
        stop=stop,
        diverging=diverging,
        alpha=alpha,
        n_alpha=n_alpha,
        n_steps=n_steps,
    )
    return trajectory, depth
