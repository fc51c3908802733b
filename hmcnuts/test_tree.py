"""
Tests for NUTS trajectory building: U-turn test, leaves, short-circuiting,
depth bound and proportional candidate selection.
"""
import math

import jax.numpy as jnp
import jax.random as jr
import numpy as np
import pytest

from hmcnuts.datatypes import TreeState
from hmcnuts.hamiltonian import Hamiltonian, state_energy
from hmcnuts.integrator import gen_leapfrog
from hmcnuts.potential import potential_from_logdensity
from hmcnuts.target import gen_impossible, gen_standard_normal
from hmcnuts.tree import build_leaf, build_tree, build_trajectory, is_u_turn, merge_trees


class CountingLeapfrog:
    """Wraps a leapfrog step and counts calls"""

    def __init__(self, potential):
        self.step = gen_leapfrog(potential)
        self.calls = 0

    def __call__(self, state, τ):
        self.calls += 1
        return self.step(state, τ)


def flat_potential():
    """log density 0 everywhere: momentum never changes, every leaf is valid"""
    return potential_from_logdensity(lambda position: 0.0 * position["x"], {"x": ()})


def start(potential, q, p):
    return Hamiltonian(potential).init_state(jnp.array([q]), jnp.array([p]))


def test_u_turn_examples():
    assert is_u_turn(0.0, 1.0, 1.0, 1.0) is False
    assert is_u_turn(0.0, 1.0, 1.0, -1.0) is True


def test_u_turn_sums_over_variables():
    q_minus = {"a": 0.0, "b": jnp.zeros(2)}
    q_plus = {"a": 1.0, "b": jnp.array([1.0, 1.0])}
    p_minus = {"a": 1.0, "b": jnp.array([1.0, 1.0])}

    # a alone points backwards but the sum over all components is positive
    assert is_u_turn(q_minus, q_plus, p_minus, {"a": -1.0, "b": jnp.array([1.0, 1.0])}) is False
    assert is_u_turn(q_minus, q_plus, p_minus, {"a": -1.0, "b": jnp.array([0.0, 0.5])}) is True
    # Backward end pointing away from the forward end also counts
    assert is_u_turn(q_minus, q_plus, {"a": -1.0, "b": jnp.array([-1.0, 0.0])}, p_minus) is True


def test_valid_leaf():
    potential = gen_standard_normal()
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 0.5, 1.0)
    H0 = float(state_energy(state))

    leaf = build_leaf(leapfrog, state, log_u=-H0 - 10.0, H0=H0, direction=1, step_size=0.1)

    assert leaf.n_valid == 1
    assert not leaf.stop and not leaf.diverging
    assert leaf.n_alpha == 1 and leaf.n_steps == 1
    assert 0.99 < leaf.alpha <= 1.0
    assert leaf.left is leaf.right is leaf.proposal
    assert float(leaf.proposal.q[0]) > 0.5


def test_leaf_outside_slice_is_invalid_but_does_not_stop():
    potential = gen_standard_normal()
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 0.5, 1.0)
    H0 = float(state_energy(state))

    # Slice level above every reachable energy
    leaf = build_leaf(leapfrog, state, log_u=0.0, H0=H0, direction=-1, step_size=0.1)

    assert leaf.n_valid == 0
    assert not leaf.stop
    assert float(leaf.proposal.q[0]) < 0.5


def test_impossible_leaf_diverges():
    potential = gen_impossible()
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 0.0, 1.0)
    H0 = float(state_energy(state))
    assert H0 == math.inf

    leaf = build_leaf(leapfrog, state, log_u=-math.inf, H0=H0, direction=1, step_size=0.5)

    assert leaf.diverging and leaf.stop
    assert leaf.n_valid == 0
    assert leaf.alpha == 0.0


def test_energy_error_divergence():
    # Huge step on a stiff target blows the energy up
    potential = potential_from_logdensity(lambda position: -50.0 * position["x"] ** 4, {"x": ()})
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 1.0, 0.0)
    H0 = float(state_energy(state))

    leaf = build_leaf(leapfrog, state, log_u=-H0 - 1.0, H0=H0, direction=1, step_size=1.0)

    assert leaf.diverging and leaf.stop
    assert leaf.n_valid == 0


def test_stopped_first_half_short_circuits():
    potential = gen_impossible()
    leapfrog = CountingLeapfrog(potential)
    state = start(potential, 0.0, 1.0)

    tree = build_tree(leapfrog, state, -math.inf, math.inf, 1, 4, 0.1, jr.PRNGKey(0))

    assert leapfrog.calls == 1
    assert tree.stop and tree.diverging
    assert tree.n_steps == 1


def test_full_subtree_step_count_and_edges():
    potential = flat_potential()
    leapfrog = CountingLeapfrog(potential)
    state = start(potential, 0.0, 1.0)
    H0 = float(state_energy(state))

    forward = build_tree(leapfrog, state, -H0 - 1.0, H0, 1, 3, 1.0, jr.PRNGKey(0))
    assert leapfrog.calls == 8 == forward.n_steps
    assert forward.n_valid == 8
    assert not forward.stop
    assert float(forward.left.q[0]) == pytest.approx(1.0)
    assert float(forward.right.q[0]) == pytest.approx(8.0)

    backward = build_tree(leapfrog, state, -H0 - 1.0, H0, -1, 2, 1.0, jr.PRNGKey(1))
    assert float(backward.left.q[0]) == pytest.approx(-4.0)
    assert float(backward.right.q[0]) == pytest.approx(-1.0)


@pytest.mark.parametrize("max_tree_depth", [1, 2, 3, 5])
def test_trajectory_depth_bound(max_tree_depth):
    # Tiny steps on a wide target: no U-turn before the depth limit
    potential = gen_standard_normal()
    key = jr.PRNGKey(3)
    for _ in range(5):
        key, key_p, key_tree = jr.split(key, 3)
        leapfrog = CountingLeapfrog(potential)
        state = Hamiltonian(potential).init_state(jnp.array([0.0]), jr.normal(key_p, (1,)))
        H0 = float(state_energy(state))

        trajectory, depth = build_trajectory(leapfrog, state, -H0 - 1.0, H0, 1e-3, key_tree,
                                             max_tree_depth=max_tree_depth)

        assert leapfrog.calls == trajectory.n_steps
        assert leapfrog.calls <= 2 ** max_tree_depth
        assert depth <= max_tree_depth
    assert depth == max_tree_depth
    assert leapfrog.calls == 2 ** max_tree_depth - 1


def test_trajectory_stops_at_u_turn():
    # Harmonic oscillator with period 2*pi: must turn well before 2**10 steps
    potential = gen_standard_normal()
    leapfrog = CountingLeapfrog(potential)
    state = start(potential, 1.0, 0.5)
    H0 = float(state_energy(state))

    trajectory, depth = build_trajectory(leapfrog, state, -H0 - 1.0, H0, 0.2, jr.PRNGKey(0),
                                         max_tree_depth=10)

    assert trajectory.stop
    assert not trajectory.diverging
    assert depth < 10
    assert leapfrog.calls < 2 ** 6


def test_trajectory_on_impossible_target_stays_put():
    potential = gen_impossible()
    leapfrog = CountingLeapfrog(potential)
    state = start(potential, 0.3, 1.0)

    trajectory, depth = build_trajectory(leapfrog, state, -math.inf, math.inf, 0.1,
                                         jr.PRNGKey(0), max_tree_depth=10)

    assert depth == 1
    assert leapfrog.calls == 1
    assert trajectory.diverging
    assert trajectory.proposal is state
    assert trajectory.alpha / max(trajectory.n_alpha, 1) == 0.0


def _fake_tree(state, n_valid):
    return TreeState(left=state, right=state, proposal=state, n_valid=n_valid, stop=False,
                     diverging=False, alpha=float(n_valid), n_alpha=max(n_valid, 1),
                     n_steps=max(n_valid, 1))


def test_merge_selects_in_proportion_to_valid_leaves():
    potential = flat_potential()
    first = start(potential, 0.0, 1.0)
    second = start(potential, 1.0, 1.0)
    tree1 = _fake_tree(first, 1)
    tree2 = _fake_tree(second, 3)

    keys = jr.split(jr.PRNGKey(11), 2000)
    picks = [merge_trees(tree1, tree2, 1, k).proposal is second for k in keys]

    assert np.mean(picks) == pytest.approx(0.75, abs=0.04)

    merged = merge_trees(tree1, tree2, 1, keys[0])
    assert merged.n_valid == 4
    assert merged.alpha == 4.0 and merged.n_alpha == 4 and merged.n_steps == 4
    assert merged.left is first and merged.right is second


def test_merge_never_picks_empty_second_half():
    potential = flat_potential()
    tree1 = _fake_tree(start(potential, 0.0, 1.0), 2)
    tree2 = _fake_tree(start(potential, 1.0, 1.0), 0)

    for k in jr.split(jr.PRNGKey(5), 50):
        assert merge_trees(tree1, tree2, 1, k).proposal is tree1.proposal


def test_subtree_candidate_is_uniform_over_valid_leaves():
    """Depth 2 subtree, all four leaves valid: each is the candidate 1/4 of the time"""
    potential = flat_potential()
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 0.0, 1.0)
    H0 = float(state_energy(state))

    keys = jr.split(jr.PRNGKey(2), 1200)
    picks = [
        float(build_tree(leapfrog, state, -H0 - 1.0, H0, 1, 2, 1.0, k).proposal.q[0])
        for k in keys
    ]
    counts = np.array([np.sum(np.isclose(picks, leaf)) for leaf in (1.0, 2.0, 3.0, 4.0)])

    assert counts.sum() == len(keys)
    assert np.allclose(counts / len(keys), 0.25, atol=0.05)


def test_leaf_validity_uses_leaf_energy_only():
    """Slice u ~ U(0, exp(-H0)) holds a leaf iff u <= exp(-H)"""
    potential = gen_standard_normal()
    leapfrog = gen_leapfrog(potential)
    state = start(potential, 0.5, 1.0)
    H0 = float(state_energy(state))
    _, H = leapfrog(state, 0.1)
    H = float(H)

    inside = build_leaf(leapfrog, state, log_u=-H - 1e-6, H0=H0, direction=1, step_size=0.1)
    outside = build_leaf(leapfrog, state, log_u=-H + 1e-6, H0=H0, direction=1, step_size=0.1)

    assert inside.n_valid == 1
    # u is still far below exp(H0 - H) here, so that bound would accept it
    assert -H + 1e-6 < H0 - H
    assert outside.n_valid == 0
