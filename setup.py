from setuptools import setup
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, 'README.rst'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='pydkg-beacon',
    version='0.1.0.dev1',
    description='Threshold distributed key generation and randomness beacon',
    long_description=long_description,
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',

        'Environment :: Console',

        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',

        'Programming Language :: Python :: 3',
    ],

    packages=['pydkgbeacon'],
    python_requires='>=3.8',
    install_requires=[
        'cryptography',
        'json-rpc',
        'py_ecc>=6.0',
        'pycryptodome',
        'sqlalchemy>=1.4',
    ],
    extras_require={
        'test': [
            'flake8',
            'pytest',
        ],
    },

    entry_points={
        'console_scripts': [
            'pydkg-beacon=pydkgbeacon.__main__:main',
        ],
    },
)
