"""
Physical constants in SI units.

Values match the CODATA 2014 figures used throughout the validation runs, so
that expected periods and energy gains are reproducible bit for bit.
"""

# Coulomb constant k_e = 1 / (4 pi eps_0) [N m^2 C^-2]
COULOMB_CONSTANT = 8.9875517873681764e9

# Elementary charge [C]
ELEMENTARY_CHARGE = 1.60217662e-19

# Proton rest mass [kg]
PROTON_MASS = 1.6726219e-27

# Speed of light in vacuum [m/s]
SPEED_OF_LIGHT = 299792458.0

# Fraction of c at which the acceleration run is stopped
LIGHT_SPEED_FRACTION_LIMIT = 0.1
