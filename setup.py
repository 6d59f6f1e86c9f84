"""
Setup script for the envhealth-bayes workshop package
"""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_file(filename):
    filepath = os.path.join(os.path.dirname(__file__), filename)
    if not os.path.exists(filepath):
        return ''
    # Try encodings in order: utf-8-sig (UTF-8 BOM), utf-16 (Windows BOM), utf-8, latin-1
    for enc in ('utf-8-sig', 'utf-16', 'utf-8', 'latin-1'):
        try:
            with open(filepath, encoding=enc) as f:
                return f.read()
        except (UnicodeDecodeError, LookupError):
            continue
    return ''

setup(
    name='envhealth-bayes',
    version='0.1.0',
    author='EnvHealth Bayes Workshop Team',
    description='Bayesian modelling workshop toolkit for environmental health data',
    long_description=read_file('README.md'),
    long_description_content_type='text/markdown',
    license='MIT',

    # Package discovery from src/
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    python_requires='>=3.9',

    install_requires=[
        'numpy>=1.21.0',
        'scipy>=1.7.0',
        'matplotlib>=3.5.0',
        'seaborn>=0.11.0',
        'pandas>=1.3.0',
        'tqdm>=4.62.0',
        'pymc>=5.10.0',
        'arviz>=0.17.0,<1.0',
        'pytensor>=2.18.0',
        'netCDF4>=1.6.0',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
            'black>=22.0.0',
            'flake8>=4.0.0',
        ],
    },

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Education',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Medical Science Apps.',
        'Topic :: Scientific/Engineering :: Atmospheric Science',
    ],

    keywords='bayesian mcmc pymc environmental-health mortality air-pollution ensemble workshop',
)
