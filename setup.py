from setuptools import find_packages, setup

setup(
    name="vault_refs",
    version="0.1.0",
    packages=find_packages(exclude=["vault_refs_tests", "vault_refs_tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "hvac",
        "pydantic>=2",
        "python-dotenv",
        "requests",
        "tenacity>=8",
    ],
    extras_require={"dev": ["pytest"]},
    entry_points={
        "console_scripts": [
            "vault-manager=vault_refs.cli:manager_main",
            "vault-validate=vault_refs.cli:validator_main",
        ]
    },
)
