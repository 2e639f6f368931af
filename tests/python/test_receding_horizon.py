"""
Tests for receding-horizon belief-space planning.
"""

import pytest
import numpy as np

from beliefscp.exceptions import InvalidInputError
from beliefscp.planning import (
    Belief,
    BeliefCost,
    GoalRegion,
    HistoryRecorder,
    RecedingHorizonPlanner,
    SCPConfig,
    SCPStatus,
)


class TestRecedingHorizonPlanner:
    """Test RecedingHorizonPlanner setup."""

    def test_horizon_at(self, integrator):
        """Shrinking horizon reaches the goal at a fixed time."""
        planner = RecedingHorizonPlanner(integrator, T=5)
        assert [planner.horizon_at(k) for k in range(4)] == [5, 4, 3, 2]

        fixed = RecedingHorizonPlanner(integrator, T=5, shrink_horizon=False)
        assert fixed.horizon_at(3) == 5

    def test_invalid_length(self, integrator):
        with pytest.raises(InvalidInputError):
            RecedingHorizonPlanner(integrator, T=1)

    def test_n_steps_validation(self, integrator, certain_belief):
        """Step counts are checked before planning."""
        planner = RecedingHorizonPlanner(integrator, T=3)
        with pytest.raises(InvalidInputError):
            planner.run(np.zeros(1), certain_belief, n_steps=3)
        with pytest.raises(InvalidInputError):
            planner.run(np.zeros(1), certain_belief, n_steps=0)

        fixed = RecedingHorizonPlanner(integrator, T=3, shrink_horizon=False)
        with pytest.raises(InvalidInputError):
            fixed.run(np.zeros(1), certain_belief)

    def test_plan(self, integrator, certain_belief):
        """A single plan from the current belief."""
        planner = RecedingHorizonPlanner(
            integrator, T=2, cost=BeliefCost(alpha_control=0.1), goal=GoalRegion([10.0], 0.0),
            config=SCPConfig(initial_curvature=[0.0, 0.2, 0.0], initial_trust_box_size=100.0),
        )
        result = planner.plan(certain_belief)

        assert result.status == SCPStatus.CONVERGED
        assert abs(result.optimal_control[0] - 10.0) < 1e-4

    def test_plan_records_trajectories(self, integrator, certain_belief):
        """A recorder passed to the planner sees every accepted step."""
        recorder = HistoryRecorder()
        planner = RecedingHorizonPlanner(
            integrator, T=2, goal=GoalRegion([10.0], 0.0), visualizer=recorder
        )
        result = planner.plan(certain_belief)

        assert len(recorder) == result.accepted_steps > 0


@pytest.mark.integration
@pytest.mark.slow
class TestClosedLoop:
    """Closed-loop execution."""

    def test_noiseless_reaches_goal(self, integrator, certain_belief):
        """
        Without noise execution follows the plan.

        minimize Σ u² subject to Σ u = 6  ->  u = [2, 2, 2]
        """
        planner = RecedingHorizonPlanner(integrator, T=4, goal=GoalRegion([6.0], 0.0))
        history = planner.run(np.zeros(1), certain_belief, rng=0)

        assert history["x"].shape == (4, 1)
        assert history["u"].shape == (3, 1)
        assert history["belief_means"].shape == (4, 1)
        assert history["covariances"].shape == (4, 1, 1)
        assert history["cost"].shape == (3,)
        assert len(history["results"]) == 3

        np.testing.assert_allclose(history["u"][:, 0], [2.0, 2.0, 2.0], atol=0.05)
        assert abs(history["x"][-1, 0] - 6.0) < 0.05
        np.testing.assert_allclose(history["belief_means"], history["x"])

    def test_noisy_run_reproducible(self, noisy_integrator):
        """The same seed gives the same closed-loop run."""
        planner = RecedingHorizonPlanner(
            noisy_integrator, T=3, goal=GoalRegion([4.0], 0.5), u_min=-3.0, u_max=3.0,
            config=SCPConfig(max_sqp_iterations=20),
        )
        belief0 = Belief([0.0], [[0.5]])
        first = planner.run(np.array([0.2]), belief0, rng=3)
        second = planner.run(np.array([0.2]), belief0, rng=3)

        np.testing.assert_array_equal(first["x"], second["x"])
        np.testing.assert_array_equal(first["u"], second["u"])
        assert np.all(np.abs(first["u"]) <= 3.0 + 1e-9)
        assert abs(first["belief_means"][-1, 0] - 4.0) < 1.5
        assert first["covariances"][-1, 0, 0] < 0.5

    def test_fixed_horizon(self, integrator, certain_belief):
        """Without shrinking the requested number of steps is run."""
        planner = RecedingHorizonPlanner(
            integrator, T=3, goal=GoalRegion([2.0], 0.0), shrink_horizon=False
        )
        history = planner.run(np.zeros(1), certain_belief, n_steps=2)

        assert len(history["results"]) == 2
        assert history["u"].shape == (2, 1)
