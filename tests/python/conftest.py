"""
pytest configuration and fixtures for beliefscp tests.
"""

import pytest


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def integrator():
    """
    Noiseless 1-D integrator.

    x' = x + u, z = x

    With zero noise the covariance stays zero, so the belief cost reduces
    to the control effort.
    """
    from beliefscp.planning import single_integrator
    return single_integrator(dim=1, dt=1.0)


@pytest.fixture
def noisy_integrator():
    """1-D integrator with process std 0.1 and observation std 0.2."""
    from beliefscp.planning import single_integrator
    return single_integrator(dim=1, dt=1.0, process_std=0.1, observation_std=0.2)


@pytest.fixture
def light_dark():
    """Planar point robot with position-dependent sensing."""
    from beliefscp.planning import point_light_dark
    return point_light_dark(dt=1.0)


@pytest.fixture
def car():
    """Kinematic car with range/heading sensing; heading is an angle."""
    from beliefscp.planning import planar_car
    return planar_car()


@pytest.fixture
def certain_belief():
    """1-D belief at the origin with zero covariance."""
    from beliefscp.planning import Belief
    return Belief(mean=[0.0], cov=[[0.0]])


@pytest.fixture
def goal_problem(integrator, certain_belief):
    """
    Reach x = 10 from x = 0 in one step.

    minimize    alpha_control * u²
    subject to  x_1 = x_0 + u, x_1 = 10

    Optimal: u = 10, cost = 100 * alpha_control
    """
    from beliefscp.planning import BeliefCost, BeliefProblem, GoalRegion

    def make(alpha_control=1.0, **kwargs):
        return BeliefProblem(
            system=integrator,
            belief0=certain_belief,
            T=2,
            cost=BeliefCost(alpha_control=alpha_control),
            goal=GoalRegion(center=[10.0], radius=0.0),
            **kwargs,
        )

    return make


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
