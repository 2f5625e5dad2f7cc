from setuptools import find_packages, setup

setup(
    name="codeowners-reconcile",
    version="0.1.0",
    license="Apache License 2.0",

    python_requires=">=3.11",
    description="Reconcile the CODEOWNERS files of GitHub repositories with "
                "their desired state, committing every change through a "
                "pull request.",

    packages=find_packages(exclude=('tests', '*.test', '*.test.*')),

    install_requires=[
        "sretoolbox~=1.2",
        "Click>=7.0,<9.0",
        "toml>=0.10.0,<0.11.0",
        "PyGithub>=1.55,<3.0",
        "requests>=2.22.0,<3.0",
        "sentry-sdk>=1.0",
        "pydantic>=2.0,<3.0",
        "PyYAML>=6.0",
    ],

    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-mock>=3.10",
        ],
    },

    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
    ],
    entry_points={
        'console_scripts': [
            'codeowners-reconcile = codeowners_reconcile.cli:integration',
        ],
    },
)
