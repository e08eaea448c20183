from setuptools import setup, find_packages

with open("Readme.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="fleet-inventory",
    version="1.0.0",
    author="Fleet Inventory",
    author_email="support@fleet-inventory.example",
    description='Agent et serveur d\'inventaire de parc avec tâches distantes.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    include_package_data=True,
    packages=find_packages(include=["fleetinv", "fleetinv.*"]),
    python_requires='>=3.9',
    install_requires=[
        "psutil>=5.9.0",
        "requests>=2.28.0",
        "urllib3>=1.26.0",
        "Flask>=2.3.0",
        "schedule>=1.2.0",
        "SQLAlchemy>=2.0",
        "pydantic>=2.0",
        "configparser>=5.3.0",
        "pywin32>=306; platform_system=='Windows'",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
        "dev": [
            "black>=23.0.0",
            "flake8>=6.0.0",
        ],
    },

    entry_points='''
        [console_scripts]
        fleetinv-agent=fleetinv.main:main
        fleetinv-server=fleetinv.server.app:main
    '''
)
