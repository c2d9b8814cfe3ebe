import pickle
import unittest

import numpy as np

from simpkin.errors import MechanismError
from simpkin.models import (
    ArrheniusRate,
    ElementaryRate,
    Mechanism,
    NasaPolynomial,
    Reaction,
    Species,
    ThirdBody,
    ThirdBodyRate,
    TroeParameters,
    parse_composition,
)

FLAT = (3.5, 0.0, 0.0, 0.0, 0.0, -1000.0, 4.0)
ATOMIC_WEIGHTS = {"N": 14.007e-3, "O": 15.999e-3}


def make_species(name, composition, high=FLAT):
    return Species(
        name=name,
        composition=composition,
        molar_mass=sum(ATOMIC_WEIGHTS[e] * n for e, n in composition.items()),
        low=NasaPolynomial(300.0, 1000.0, FLAT),
        high=NasaPolynomial(1000.0, 5000.0, high),
    )


class TestNasaPolynomial(unittest.TestCase):
    def test_constant_cp(self):
        poly = NasaPolynomial(300.0, 1000.0, FLAT)
        self.assertAlmostEqual(poly.cp_r(500.0), 3.5)
        self.assertAlmostEqual(poly.h_rt(500.0), 3.5 - 1000.0 / 500.0)
        self.assertAlmostEqual(poly.s_r(500.0), 3.5 * np.log(500.0) + 4.0)

    def test_needs_seven_coefficients(self):
        with self.assertRaises(MechanismError):
            NasaPolynomial(300.0, 1000.0, (1.0, 2.0))

    def test_range_must_be_ordered(self):
        with self.assertRaises(MechanismError):
            NasaPolynomial(1000.0, 300.0, FLAT)


class TestRateLaws(unittest.TestCase):
    def test_arrhenius(self):
        rate = ArrheniusRate(2.0, 1.0, 8.314462618 * 1000.0)
        self.assertAlmostEqual(rate.rate_constant(1000.0), 2.0 * 1000.0 * np.exp(-1.0))

    def test_third_body_vector(self):
        third_body = ThirdBody({1: 2.5, 3: 0.0}, default_efficiency=1.0)
        np.testing.assert_array_equal(third_body.efficiency_vector(4), [1.0, 2.5, 1.0, 0.0])

    def test_troe_center_without_t2(self):
        troe = TroeParameters(a=0.5, t3=100.0, t1=1000.0)
        expected = 0.5 * np.exp(-10.0) + 0.5 * np.exp(-1.0)
        self.assertAlmostEqual(troe.center(1000.0), expected)

    def test_rate_kinds(self):
        self.assertEqual(ElementaryRate.kind, "elementary")
        self.assertEqual(ThirdBodyRate.kind, "three-body")

    def test_third_body_is_read_only(self):
        efficiencies = {1: 2.5}
        third_body = ThirdBody(efficiencies)
        efficiencies[2] = 4.0
        self.assertEqual(dict(third_body.efficiencies), {1: 2.5})
        with self.assertRaises(TypeError):
            third_body.efficiencies[1] = 0.0
        copy = pickle.loads(pickle.dumps(third_body))
        self.assertEqual(copy, third_body)
        with self.assertRaises(TypeError):
            copy.efficiencies[1] = 0.0


class TestSpecies(unittest.TestCase):
    def test_composition_is_read_only(self):
        composition = {"O": 2}
        species = make_species("O2", composition)
        composition["N"] = 1
        self.assertEqual(dict(species.composition), {"O": 2})
        with self.assertRaises(TypeError):
            species.composition["O"] = 3

    def test_pickles(self):
        species = make_species("O2", {"O": 2})
        copy = pickle.loads(pickle.dumps(species))
        self.assertEqual(copy, species)
        self.assertEqual(copy.t_mid, 1000.0)
        with self.assertRaises(TypeError):
            copy.composition["O"] = 3


class TestMechanism(unittest.TestCase):
    def setUp(self):
        self.species = (
            make_species("O2", {"O": 2}),
            make_species("O", {"O": 1}),
            make_species("N2", {"N": 2}),
        )
        self.dissociation = Reaction(
            equation="O2 <=> 2 O",
            reactants=((0, 1.0),),
            products=((1, 2.0),),
            rate=ElementaryRate(ArrheniusRate(1.0e10, 0.0, 4.0e5)),
        )

    def test_accessors(self):
        mechanism = Mechanism("test", self.species, (self.dissociation,))
        self.assertEqual(mechanism.n_species, 3)
        self.assertEqual(mechanism.n_reactions, 1)
        self.assertEqual(mechanism.species_names, ("O2", "O", "N2"))
        self.assertEqual(mechanism.species_index("N2"), 2)
        self.assertAlmostEqual(mechanism.molar_masses[0], 2 * 15.999e-3)
        with self.assertRaises(MechanismError):
            mechanism.species_index("AR")

    def test_duplicate_species(self):
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species + (make_species("O2", {"O": 2}),), ())

    def test_discontinuous_thermo(self):
        jump = (4.5,) + FLAT[1:]
        species = self.species + (make_species("X", {"N": 1}, high=jump),)
        with self.assertRaises(MechanismError):
            Mechanism("test", species, ())

    def test_unknown_species_index(self):
        reaction = Reaction("O2 <=> 2 O", ((0, 1.0),), ((7, 2.0),), self.dissociation.rate)
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species, (reaction,))

    def test_unknown_third_body_index(self):
        rate = ThirdBodyRate(ArrheniusRate(1.0), ThirdBody({9: 2.0}))
        reaction = Reaction("O2 + M <=> 2 O + M", ((0, 1.0),), ((1, 2.0),), rate)
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species, (reaction,))

    def test_negative_coefficient(self):
        reaction = Reaction("O2 <=> 2 O", ((0, -1.0),), ((1, 2.0),), self.dissociation.rate)
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species, (reaction,))

    def test_zero_net_stoichiometry(self):
        reaction = Reaction("O2 <=> O2", ((0, 1.0),), ((0, 1.0),), self.dissociation.rate)
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species, (reaction,))

    def test_element_balance(self):
        reaction = Reaction("O2 <=> O", ((0, 1.0),), ((1, 1.0),), self.dissociation.rate)
        with self.assertRaises(MechanismError):
            Mechanism("test", self.species, (reaction,))

    def test_mass_fractions_from_moles(self):
        mechanism = Mechanism("test", self.species, ())
        y = mechanism.mass_fractions("O2:1, N2:3.76")
        w_o2 = 2 * 15.999
        w_n2 = 2 * 14.007
        self.assertAlmostEqual(y[0], w_o2 / (w_o2 + 3.76 * w_n2))
        self.assertAlmostEqual(y.sum(), 1.0)
        np.testing.assert_allclose(mechanism.mole_fractions(y), [1 / 4.76, 0.0, 3.76 / 4.76])

    def test_mass_fractions_mass_basis(self):
        mechanism = Mechanism("test", self.species, ())
        y = mechanism.mass_fractions({"O2": 1.0, "N2": 3.0}, basis="mass")
        np.testing.assert_allclose(y, [0.25, 0.0, 0.75])
        with self.assertRaises(ValueError):
            mechanism.mass_fractions({"O2": 1.0}, basis="volume")
        with self.assertRaises(ValueError):
            mechanism.mass_fractions({"O2": -1.0})


class TestParseComposition(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_composition("H2:2, O2:1,N2:3.76"), {"H2": 2.0, "O2": 1.0, "N2": 3.76})

    def test_malformed(self):
        with self.assertRaises(ValueError):
            parse_composition("H2 2")


if __name__ == '__main__':
    unittest.main()
