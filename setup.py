#
from setuptools import setup, find_packages

def get_version():
    """
    Get version number from the outbreak_projections package.

    The easiest way would be to just ``import outbreak_projections``, but note
    that this may fail if the dependencies have not been installed yet.
    Instead, we've put the version number in a simple version_info module,
    that we'll import here by temporarily adding the package directory to the
    pythonpath using sys.path.
    """
    import os
    import sys

    sys.path.append(os.path.abspath(os.path.join('src', 'outbreak_projections')))
    from version_info import VERSION as version
    sys.path.pop()

    return version

def get_readme():
    """
    Load README.md text for use as description.
    """
    with open('README.md') as f:
        return f.read()

setup(
    # Module name (lowercase)
    name='outbreak_projections',

    # Version
    version=get_version(),

    description='Outbreak growth rates, reproduction numbers and case projections.',

    long_description=get_readme(),
    long_description_content_type='text/markdown',

    license='MIT license',

    url='',

    # Packages to include
    package_dir={'': 'src'},
    packages=find_packages(where='src'),

    python_requires='>=3.8',

    # List of dependencies
    install_requires=[
        # Dependencies go here!
        'numpy>=1.17',
        'matplotlib',
        'pandas',
        'scipy>=1.6',
    ],
    extras_require={
        'docs': [
            # Sphinx for doc generation. Version 1.7.3 has a bug:
            'sphinx>=1.5, !=1.7.3',
            # Nice theme for docs
            'sphinx_rtd_theme',
        ],
        'dev': [
            # Flake8 for code style checking
            'flake8>=3',
            'pytest',
            'pytest-cov',
        ],
    },
    entry_points={
        'console_scripts': [
            'outbreak-projections=outbreak_projections.runner:main',
        ],
    },
)
