import unittest

import numpy as np

from simpkin.constants import ONE_ATM, R_GAS
from simpkin.errors import IntegrationError
from simpkin.integrator import IntegrationStatus, IntegratorOptions
from simpkin.kinetics import Kinetics
from simpkin.reactors import (
    PSRConfiguration,
    ReactorState,
    build_constant_pressure_rhs,
    build_constant_volume_rhs,
    build_psr_rhs,
    build_reactor_rhs,
    simulate,
)

from toy import HEAT_OF_REACTION, MOLAR_MASS, toy_mechanism


class TestClosedReactors(unittest.TestCase):
    def setUp(self):
        self.mechanism = toy_mechanism()
        self.kinetics = Kinetics(self.mechanism)
        self.thermo = self.kinetics.thermo
        self.y0 = np.array([0.2, 0.0, 0.8])
        self.state = ReactorState(temperature=1000.0, mass_fractions=self.y0, pressure=ONE_ATM)

    def test_constant_pressure_conserves_enthalpy(self):
        rhs = build_constant_pressure_rhs(self.mechanism, ONE_ATM, kinetics=self.kinetics)
        trace = simulate(rhs, self.state, 2.0)
        self.assertTrue(trace.converged)
        # constant cp: the whole heat of reaction goes into sensible enthalpy
        expected = 1000.0 + 0.2 * HEAT_OF_REACTION / (3.5 * R_GAS)
        self.assertAlmostEqual(trace.temperature[-1], expected, delta=0.5)
        self.assertLess(trace.mass_fractions[-1, 0], 1e-6)
        h0 = self.thermo.enthalpy_mass(1000.0, self.y0)
        h1 = self.thermo.enthalpy_mass(trace.temperature[-1], trace.mass_fractions[-1])
        self.assertAlmostEqual((h1 - h0) / abs(h0), 0.0, delta=1e-4)

    def test_constant_volume_conserves_internal_energy(self):
        density = self.thermo.density(1000.0, ONE_ATM, self.y0)
        rhs = build_constant_volume_rhs(self.mechanism, density, kinetics=self.kinetics)
        trace = simulate(rhs, self.state, 2.0)
        self.assertTrue(trace.converged)
        expected = 1000.0 + 0.2 * HEAT_OF_REACTION / (2.5 * R_GAS)
        self.assertAlmostEqual(trace.temperature[-1], expected, delta=0.5)

    def test_rhs_matches_kinetics(self):
        rhs = build_constant_pressure_rhs(self.mechanism, ONE_ATM)
        dstate = rhs(0.0, self.state.to_vector())
        rates = self.kinetics.evaluate(1000.0, ONE_ATM, self.y0)
        density = self.thermo.density(1000.0, ONE_ATM, self.y0)
        np.testing.assert_allclose(dstate[:-1], rates.net * MOLAR_MASS / density)
        cp = self.thermo.cp_mass(1000.0, self.y0)
        self.assertAlmostEqual(dstate[-1] / (rates.heat_release_rate / (density * cp)), 1.0)

    def test_build_reactor_rhs(self):
        conp = build_reactor_rhs(self.mechanism, "constant_pressure", self.state)
        conv = build_reactor_rhs(self.mechanism, "constant_volume", self.state)
        y = self.state.to_vector()
        np.testing.assert_allclose(conp(0.0, y)[:-1], conv(0.0, y)[:-1])
        # cv < cp: the same heat release heats a closed volume faster
        self.assertGreater(conv(0.0, y)[-1], conp(0.0, y)[-1])
        with self.assertRaises(ValueError):
            build_reactor_rhs(self.mechanism, "plug_flow", self.state)

    def test_equilibrium_is_steady(self):
        mechanism = toy_mechanism(reversible=True)
        kinetics = Kinetics(mechanism)
        kc = kinetics.equilibrium_constants(1200.0)[0]
        y = np.array([0.5 / (1.0 + kc), 0.5 * kc / (1.0 + kc), 0.5])
        density = kinetics.thermo.density(1200.0, ONE_ATM, y)
        rhs = build_constant_volume_rhs(mechanism, density, kinetics=kinetics)
        trace = simulate(rhs, np.append(y, 1200.0), 1.0)
        self.assertTrue(trace.converged)
        self.assertAlmostEqual(trace.temperature[-1], 1200.0, delta=1e-6)
        np.testing.assert_allclose(trace.mass_fractions[-1], y, atol=1e-10)

    def test_failure_is_reported(self):
        rhs = build_constant_pressure_rhs(self.mechanism, ONE_ATM)
        options = IntegratorOptions(max_steps=2)
        trace = simulate(rhs, self.state, 2.0, options)
        self.assertFalse(trace.converged)
        self.assertEqual(trace.status, IntegrationStatus.MAX_STEPS)
        self.assertEqual(len(trace.time), 3)
        with self.assertRaises(IntegrationError) as ctx:
            simulate(rhs, self.state, 2.0, options, raise_on_failure=True)
        self.assertEqual(ctx.exception.status, IntegrationStatus.MAX_STEPS)


class TestPSR(unittest.TestCase):
    def test_inert_flush(self):
        # no reaction: the reactor content is replaced exponentially by the feed
        mechanism = toy_mechanism(pre_exponential=0.0)
        configuration = PSRConfiguration(
            pressure=ONE_ATM,
            residence_time=0.01,
            inflow_temperature=300.0,
            inflow_mass_fractions=[0.0, 0.0, 1.0],
        )
        rhs = build_psr_rhs(mechanism, configuration)
        trace = simulate(rhs, np.array([0.2, 0.0, 0.8, 300.0]), 0.02)
        self.assertTrue(trace.converged)
        self.assertAlmostEqual(trace.mass_fractions[-1, 0], 0.2 * np.exp(-2.0), delta=1e-4)
        self.assertAlmostEqual(trace.temperature[-1], 300.0, delta=1e-6)

    def test_inflow_heats_reactor(self):
        mechanism = toy_mechanism(pre_exponential=0.0)
        configuration = PSRConfiguration(ONE_ATM, 0.01, 600.0, [0.0, 0.0, 1.0])
        rhs = build_psr_rhs(mechanism, configuration)
        trace = simulate(rhs, np.array([0.0, 0.0, 1.0, 300.0]), 0.05)
        # constant cp: T relaxes like the composition does
        self.assertAlmostEqual(trace.temperature[-1], 600.0 - 300.0 * np.exp(-5.0), delta=0.1)

    def test_configuration_checks(self):
        with self.assertRaises(ValueError):
            PSRConfiguration(ONE_ATM, 0.0, 300.0, [0.0, 0.0, 1.0])
        mechanism = toy_mechanism()
        with self.assertRaises(ValueError):
            build_psr_rhs(mechanism, PSRConfiguration(ONE_ATM, 1.0, 300.0, [1.0]))


if __name__ == '__main__':
    unittest.main()
