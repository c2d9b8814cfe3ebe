import os
import pickle
import tempfile
import unittest

import cantera as ct
import numpy as np

from simpkin.constants import R_GAS
from simpkin.errors import MechanismError
from simpkin.loader import load_bundled, load_mechanism, mechanism_from_solution
from simpkin.models import ElementaryRate, FalloffRate, ThirdBodyRate

from toy import toy_yaml


class TestBundledMechanism(unittest.TestCase):
    def setUp(self):
        self.mechanism = load_bundled("h2o2")

    def test_size(self):
        self.assertEqual(self.mechanism.name, "h2o2")
        self.assertEqual(self.mechanism.n_species, 10)
        self.assertEqual(self.mechanism.n_reactions, 29)
        self.assertEqual(
            self.mechanism.species_names,
            ("H2", "H", "O", "O2", "OH", "H2O", "HO2", "H2O2", "AR", "N2"),
        )

    def test_rate_kinds(self):
        kinds = [reaction.rate.kind for reaction in self.mechanism.reactions]
        self.assertEqual(kinds.count(FalloffRate.kind), 1)
        # explicit colliders such as "H + O2 + AR" may come through either way
        self.assertGreaterEqual(kinds.count(ThirdBodyRate.kind), 5)
        self.assertEqual(
            kinds.count(ThirdBodyRate.kind) + kinds.count(ElementaryRate.kind), 28
        )
        self.assertEqual(sum(r.duplicate for r in self.mechanism.reactions), 6)

    def test_unit_conversion(self):
        reactions = self.mechanism.reactions
        branching = reactions[10].rate.arrhenius
        self.assertAlmostEqual(branching.pre_exponential / 2.65e10, 1.0)
        self.assertAlmostEqual(branching.temperature_exponent, -0.6707)
        self.assertAlmostEqual(branching.activation_energy / (17041.0 * 4.184), 1.0)

        recombination = reactions[0].rate
        self.assertIsInstance(recombination, ThirdBodyRate)
        self.assertAlmostEqual(recombination.arrhenius.pre_exponential / 1.2e5, 1.0)
        water = self.mechanism.species_index("H2O")
        self.assertAlmostEqual(recombination.third_body.efficiencies[water], 15.4)
        self.assertEqual(recombination.third_body.default_efficiency, 1.0)

        falloff = reactions[21].rate
        self.assertIsInstance(falloff, FalloffRate)
        self.assertAlmostEqual(falloff.high.pre_exponential / 7.4e7, 1.0)
        self.assertAlmostEqual(falloff.low.pre_exponential / 2.3e6, 1.0)
        self.assertAlmostEqual(falloff.low.activation_energy / (-1700.0 * 4.184), 1.0)
        self.assertAlmostEqual(falloff.troe.a, 0.7346)
        self.assertAlmostEqual(falloff.troe.t3, 94.0)
        self.assertAlmostEqual(falloff.troe.t1, 1756.0)
        self.assertAlmostEqual(falloff.troe.t2, 5182.0)

    def test_thermo_ranges(self):
        water = self.mechanism.species[self.mechanism.species_index("H2O")]
        self.assertEqual(water.low.t_min, 200.0)
        self.assertEqual(water.t_mid, 1000.0)
        self.assertEqual(water.high.t_max, 3500.0)
        self.assertAlmostEqual(water.low.coefficients[0], 4.19864056)
        self.assertAlmostEqual(water.high.coefficients[0], 3.03399249)

    def test_molar_masses(self):
        water = self.mechanism.species[self.mechanism.species_index("H2O")]
        self.assertAlmostEqual(water.molar_mass, 18.015e-3, places=6)

    def test_pickles(self):
        copy = pickle.loads(pickle.dumps(self.mechanism))
        self.assertEqual(copy.species_names, self.mechanism.species_names)
        self.assertEqual(
            copy.reactions[0].rate.third_body.efficiencies,
            self.mechanism.reactions[0].rate.third_body.efficiencies,
        )


class TestLoader(unittest.TestCase):
    def load_text(self, text):
        return mechanism_from_solution(ct.Solution(yaml=text), "toy")

    def test_toy(self):
        mechanism = self.load_text(toy_yaml())
        self.assertEqual(mechanism.species_names, ("A", "B", "N2"))
        reaction = mechanism.reactions[0]
        self.assertFalse(reaction.reversible)
        self.assertIsInstance(reaction.rate, ElementaryRate)
        self.assertAlmostEqual(reaction.rate.arrhenius.pre_exponential, 5.0e7)
        self.assertAlmostEqual(reaction.rate.arrhenius.activation_energy / 1.2e5, 1.0)
        np.testing.assert_allclose(mechanism.molar_masses, 28.014e-3, rtol=1e-4)

    def test_energy_in_kelvin(self):
        mechanism = self.load_text(toy_yaml(activation_energy=1000.0, energy_units="K"))
        activation_energy = mechanism.reactions[0].rate.arrhenius.activation_energy
        self.assertAlmostEqual(activation_energy / (1000.0 * R_GAS), 1.0, places=8)

    def test_name_starting_with_digit(self):
        mechanism = self.load_text(toy_yaml(fuel="1-X"))
        self.assertEqual(mechanism.species_names, ("1-X", "B", "N2"))
        reaction = mechanism.reactions[0]
        self.assertEqual(reaction.reactants, ((0, 1.0),))
        self.assertEqual(reaction.products, ((1, 1.0),))

    def test_unsupported_rate_type(self):
        text = toy_yaml().replace(
            "  rate-constant: {A: 50000000.0, b: 0.0, Ea: 120000.0}",
            "  type: pressure-dependent-Arrhenius\n"
            "  rate-constants:\n"
            "  - {P: 0.1 atm, A: 1.0e+07, b: 0.0, Ea: 1.2e+05}\n"
            "  - {P: 10.0 atm, A: 1.0e+08, b: 0.0, Ea: 1.2e+05}",
        )
        self.assertIn("pressure-dependent-Arrhenius", text)
        with self.assertRaises(MechanismError):
            load_from_text(text)

    def test_load_from_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "toy.yaml")
            with open(path, "w") as f:
                f.write(toy_yaml(reversible=True))
            mechanism = load_mechanism(path)
        self.assertEqual(mechanism.name, "toy")
        self.assertTrue(mechanism.reactions[0].reversible)

    def test_unknown_species(self):
        with self.assertRaises(MechanismError):
            load_from_text(toy_yaml().replace("equation: A => B", "equation: A => C"))

    def test_malformed_file(self):
        with self.assertRaises(MechanismError):
            load_from_text('{"name": "broken", "species": [')
        with self.assertRaises(MechanismError):
            load_from_text(toy_yaml().replace("model: NASA7", "model: NASA9"))

    def test_missing_mechanism(self):
        with self.assertRaises(MechanismError):
            load_mechanism("no-such-mechanism")
        with self.assertRaises(MechanismError):
            load_bundled("no-such-mechanism")

    def test_cantera_data_directory(self):
        mechanism = load_mechanism("gri30.yaml")
        self.assertEqual(mechanism.name, "gri30")
        self.assertEqual(mechanism.n_species, 53)
        self.assertEqual(mechanism.n_reactions, 325)
        self.assertEqual(mechanism.species_index("CH4"), 13)


def load_from_text(text):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "mechanism.yaml")
        with open(path, "w") as f:
            f.write(text)
        return load_mechanism(path)


if __name__ == '__main__':
    unittest.main()
