"""Physical constants (SI, mole based)."""

R_GAS = 8.314462618  # J/mol/K
ONE_ATM = 101325.0  # Pa

# Reference pressure of the NASA-7 thermodynamic data
REFERENCE_PRESSURE = ONE_ATM
