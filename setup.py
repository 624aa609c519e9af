from setuptools import setup

setup(name='ionflame',
      version='0.1.0',
      description='Freely-propagating premixed flames in an applied electric field',
      long_description='',
      package_dir={'': 'python'},
      packages=['ionflame', 'ionflame.test'],
      python_requires='>=3.8',
      install_requires=['cantera>=3.0', 'numpy', 'scipy', 'h5py'],
      extras_require={'test': ['pytest'],
                      'examples': ['matplotlib']},
      entry_points={'console_scripts': ['ionflame = ionflame.cli:main']})

# From the directory containing this script:
# Install locally:
#     $ pip install .
# Install for development, with the test dependencies:
#     $ pip install -e .[test]
