"""
Tests for the belief-space SCP optimizer.

Tests covering:
1. Problem definition and initial guesses
2. Penalty loop outcomes on problems with known solutions
3. Failure modes
4. Result reporting
"""

import logging
import warnings

import pytest
import numpy as np

from beliefscp.exceptions import DimensionError, InvalidInputError, NumericalSingularityError
from beliefscp.planning import (
    Belief,
    BeliefCost,
    BeliefProblem,
    BeliefPropagator,
    BeliefSpaceOptimizer,
    BeliefSystem,
    GoalRegion,
    SCPConfig,
    SCPStatus,
    Trajectory,
    TrustRegionOutcome,
    optimize,
    planar_car_trust_groups,
)
from beliefscp.utils import state_difference

# Exact curvature of 0.1 u² on the one-step problem, with a trust region
# large enough for a single step.
EXACT = dict(initial_curvature=[0.0, 0.2, 0.0], initial_trust_box_size=100.0)


class TestBeliefProblem:
    """Test BeliefProblem class."""

    def test_too_short(self, integrator, certain_belief):
        with pytest.raises(InvalidInputError):
            BeliefProblem(system=integrator, belief0=certain_belief, T=1)

    def test_belief_dimension(self, integrator):
        with pytest.raises(DimensionError):
            BeliefProblem(system=integrator, belief0=Belief(np.zeros(2), np.eye(2)), T=3)

    def test_initial_trajectory_with_goal(self, integrator, certain_belief):
        """Straight line to the goal over the active horizon, then hold."""
        problem = BeliefProblem(
            system=integrator,
            belief0=certain_belief,
            T=5,
            goal=GoalRegion([9.0], 0.0),
            horizon=4,
        )
        traj = problem.initial_trajectory()

        np.testing.assert_allclose(traj.states[:, 0], [0.0, 3.0, 6.0, 9.0, 9.0])
        np.testing.assert_array_equal(traj.controls, np.zeros((4, 1)))

    def test_initial_trajectory_free_goal_components(self, light_dark):
        """Unconstrained goal components stay at their initial value."""
        problem = BeliefProblem(
            system=light_dark,
            belief0=Belief([1.0, 2.0], np.eye(2)),
            T=3,
            goal=GoalRegion([5.0, -4.0], [0.1, np.inf]),
        )
        traj = problem.initial_trajectory()
        np.testing.assert_allclose(traj.states[-1], [5.0, 2.0])

    def test_initial_trajectory_without_goal(self, noisy_integrator):
        """Without a goal zero controls are rolled out."""
        problem = BeliefProblem(
            system=noisy_integrator, belief0=Belief([1.0], [[1.0]]), T=3
        )
        traj = problem.initial_trajectory()

        np.testing.assert_allclose(traj.states[:, 0], [1.0, 1.0, 1.0])
        assert traj.covariances is not None


class TestPenaltyLoop:
    """Test BeliefSpaceOptimizer.solve outcomes."""

    def test_exact_curvature(self, goal_problem):
        """
        minimize 0.1 u² subject to x1 = u = 10

        Converges at the first penalty level in one accepted step.
        """
        result = optimize(goal_problem(alpha_control=0.1), SCPConfig(**EXACT))

        assert result.status == SCPStatus.CONVERGED
        assert result.constraint_satisfied
        assert abs(result.controls[0, 0] - 10.0) < 1e-4
        assert result.cost == pytest.approx(10.0, rel=1e-4)
        assert result.penalty_iterations == 1
        assert result.accepted_steps == 1
        assert result.sqp_iterations == 2
        assert result.termination == TrustRegionOutcome.MODEL_CONVERGED

    def test_default_config(self, goal_problem):
        """
        minimize u² subject to x1 = u = 10

        At penalty 5 the optimum is u = 2.5; the penalty must grow before the
        goal is reachable.
        """
        result = optimize(goal_problem())

        assert result.status == SCPStatus.CONVERGED
        assert result.violation < 1e-2
        assert abs(result.controls[0, 0] - 10.0) < 1e-2
        assert result.cost == pytest.approx(100.0, rel=1e-2)
        assert result.penalty_iterations >= 2
        assert result.penalty_coeff >= 25.0

    def test_tolerance_not_met(self, goal_problem):
        """
        Without penalty increases the violation stays at 7.5.

        minimize u² + 5 |10 - u|  ->  u = 2.5
        """
        config = SCPConfig(
            max_penalty_coeff_increases=0,
            initial_curvature=[0.0, 2.0, 0.0],
            initial_trust_box_size=100.0,
        )
        with pytest.warns(RuntimeWarning, match="exceeds tolerance"):
            result = optimize(goal_problem(), config)

        assert result.status == SCPStatus.CONSTRAINT_TOLERANCE_NOT_MET
        assert not result.constraint_satisfied
        assert result.status.has_solution
        assert abs(result.controls[0, 0] - 2.5) < 1e-4
        assert result.violation == pytest.approx(7.5, abs=1e-4)
        assert result.penalty_coeff == 5.0
        assert result.penalty_iterations == 1

    def test_tolerance_not_met_logs_warning(self, goal_problem, caplog):
        """The degraded result is logged."""
        config = SCPConfig(max_penalty_coeff_increases=0, initial_trust_box_size=100.0)
        with caplog.at_level(logging.WARNING, logger="beliefscp"):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", RuntimeWarning)
                optimize(goal_problem(), config)
        assert any("not met" in r.message for r in caplog.records)

    def test_higher_penalty_less_violation(self, goal_problem):
        """A larger initial penalty closes the gap."""
        low = SCPConfig(max_penalty_coeff_increases=0, initial_curvature=[0.0, 2.0, 0.0],
                        initial_trust_box_size=100.0)
        high = low.replace(initial_penalty_coeff=25.0)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            r_low = optimize(goal_problem(), low)
        r_high = optimize(goal_problem(), high)

        assert r_high.violation <= r_low.violation
        assert r_high.status == SCPStatus.CONVERGED
        assert abs(r_high.controls[0, 0] - 10.0) < 1e-4

    def test_horizon(self, integrator, certain_belief):
        """Stages after the horizon hold the goal with zero controls."""
        problem = BeliefProblem(
            system=integrator,
            belief0=certain_belief,
            T=4,
            cost=BeliefCost(alpha_control=0.1),
            goal=GoalRegion([10.0], 0.0),
            horizon=2,
        )
        config = SCPConfig(initial_curvature=[0.0, 0.2, 0.0, 0.2, 0.0, 0.2, 0.0],
                           initial_trust_box_size=100.0)
        result = optimize(problem, config)

        assert result.status == SCPStatus.CONVERGED
        np.testing.assert_allclose(result.controls[:, 0], [10.0, 0.0, 0.0], atol=1e-4)
        np.testing.assert_allclose(result.states[:, 0], [0.0, 10.0, 10.0, 10.0], atol=1e-4)

    def test_user_gradient(self, integrator, certain_belief):
        """An exact gradient replaces finite differences."""
        calls = []

        def gradient(z):
            calls.append(1)
            g = np.zeros_like(z)
            g[1] = 0.2 * z[1]
            return g

        problem = BeliefProblem(
            system=integrator,
            belief0=certain_belief,
            T=2,
            cost=BeliefCost(alpha_control=0.1),
            goal=GoalRegion([10.0], 0.0),
            gradient=gradient,
        )
        result = optimize(problem, SCPConfig(**EXACT))

        assert calls
        assert abs(result.controls[0, 0] - 10.0) < 1e-4

    def test_initial_controls(self, goal_problem):
        """A control sequence is rolled out and projected."""
        optimizer = BeliefSpaceOptimizer(goal_problem(alpha_control=0.1), SCPConfig(**EXACT))
        np.testing.assert_allclose(optimizer._initial_vector(np.array([[3.0]])), [0.0, 3.0, 10.0])

        result = optimizer.solve(initial=np.array([[3.0]]))
        assert abs(result.controls[0, 0] - 10.0) < 1e-4

    def test_initial_trajectory_shape(self, goal_problem):
        """The initial trajectory must match the problem."""
        optimizer = BeliefSpaceOptimizer(goal_problem())
        wrong = Trajectory(states=np.zeros((3, 1)), controls=np.zeros((2, 1)))
        with pytest.raises(DimensionError):
            optimizer.solve(initial=wrong)

    def test_repeated_solves(self, goal_problem):
        """One session can be solved repeatedly with the same outcome."""
        optimizer = BeliefSpaceOptimizer(goal_problem(alpha_control=0.1), SCPConfig(**EXACT))
        first = optimizer.solve()
        second = optimizer.solve()
        np.testing.assert_allclose(first.controls, second.controls)
        assert first.cost_evaluations == second.cost_evaluations


class TestFailures:
    """Fatal conditions raise."""

    def test_singular_observation(self):
        """A blind noiseless sensor with an uncertain belief."""
        blind = BeliefSystem(
            dynamics=lambda x, u: x + u,
            observation=lambda x: 0.0 * x,
            x_dim=1,
            u_dim=1,
            process_noise=[[0.1]],
        )
        problem = BeliefProblem(system=blind, belief0=Belief([0.0], [[0.1]]), T=3)

        with pytest.raises(NumericalSingularityError):
            optimize(problem)


class TestResult:
    """Test OptimizationResult reporting."""

    def test_fields(self, goal_problem):
        result = optimize(goal_problem(alpha_control=0.1), SCPConfig(**EXACT))

        assert result.states.shape == (2, 1)
        assert result.controls.shape == (1, 1)
        assert result.covariances.shape == (2, 1, 1)
        np.testing.assert_allclose(result.optimal_control, result.controls[0])
        assert result.qp_solves >= result.sqp_iterations
        assert result.cost_evaluations >= result.qp_solves
        assert result.solve_time > 0

    def test_summary(self, goal_problem):
        result = optimize(goal_problem(alpha_control=0.1), SCPConfig(**EXACT))
        text = result.summary()

        assert "Belief-Space SCP Summary" in text
        assert "converged" in text
        assert "QP solves" in text
        assert "Cost evaluations" in text
        assert repr(result).startswith("OptimizationResult(status=converged")


def assert_rollout_reproduces(problem, result, tolerance):
    """Rolling the initial belief through the controls gives the returned states."""
    beliefs = BeliefPropagator(problem.system).rollout(problem.belief0, result.controls)
    means = np.array([b.mean for b in beliefs])
    diff = state_difference(means, result.states, problem.system.angle_indices)
    assert np.max(np.abs(diff)) < tolerance


@pytest.mark.slow
class TestLightDark:
    """End-to-end optimization on the light-dark domain."""

    def make_problem(self, light_dark, goal):
        return BeliefProblem(
            system=light_dark,
            belief0=Belief([2.0, 2.0], np.eye(2)),
            T=5,
            goal=goal,
            u_min=-2.0,
            u_max=2.0,
        )

    def test_reaches_goal(self, light_dark):
        """The final mean lies in the goal region and covariances are valid."""
        goal = GoalRegion([0.0, 0.0], 0.5)
        result = optimize(self.make_problem(light_dark, goal), SCPConfig(max_sqp_iterations=20))

        assert result.status == SCPStatus.CONVERGED
        assert goal.contains(result.states[-1])
        assert np.all(np.abs(result.controls) <= 2.0 + 1e-9)
        assert np.isfinite(result.cost)
        for cov in result.covariances:
            assert np.all(np.linalg.eigvalsh(cov) > -1e-9)
        assert result.covariances[-1].trace() < result.covariances[0].trace()

    def test_rollout_reproduces_states(self, light_dark):
        """The returned controls drive the mean along the returned states."""
        config = SCPConfig(max_sqp_iterations=20)
        problem = self.make_problem(light_dark, GoalRegion([0.0, 0.0], 0.5))
        result = optimize(problem, config)

        assert result.status == SCPStatus.CONVERGED
        assert_rollout_reproduces(problem, result, config.cnt_tolerance)


@pytest.mark.slow
class TestPlanarCar:
    """End-to-end optimization on the kinematic car."""

    def test_rollout_reproduces_states(self, car):
        """
        Drive forward to x = 4 with a free heading.

        The heading is wrapped when comparing the rollout with the result.
        """
        config = SCPConfig(max_sqp_iterations=20, trust_region_groups=planar_car_trust_groups())
        problem = BeliefProblem(
            system=car,
            belief0=Belief([0.0, 0.0, 0.0], 0.1 * np.eye(3)),
            T=4,
            goal=GoalRegion([4.0, 0.0, 0.0], [0.5, 0.5, np.inf]),
            u_min=[-5.0, -0.5],
            u_max=[5.0, 0.5],
        )
        result = optimize(problem, config)

        assert result.status == SCPStatus.CONVERGED
        assert result.violation < config.cnt_tolerance
        assert_rollout_reproduces(problem, result, config.cnt_tolerance)
        assert np.all(np.abs(result.controls[:, 1]) <= 0.5 + 1e-9)
