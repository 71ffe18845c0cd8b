"""
python -m build
twine upload dist/*
"""

from setuptools import setup, find_packages


def safcrud_setup():
    with open("requirements.txt", "rt") as fp:
        install_requires = fp.read().strip().split("\n")

    version = "1.0.0"

    setup(
        name="safcrud",
        packages=find_packages(exclude=["tests", "tests.*"]),
        version=version,
        license="MIT",
        description="safcrud : generic SqlAlchemy Flask CRUD api with Swagger2 docs",
        long_description=open("README.rst").read(),
        keywords=["SqlAlchemy", "Flask", "REST", "CRUD", "Swagger", "OpenAPI"],
        python_requires=">=3.8, <4",
        install_requires=install_requires,
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Intended Audience :: Developers",
            "Framework :: Flask",
            "Topic :: Software Development :: Libraries",
            "Environment :: Web Environment",
            "Programming Language :: Python :: 3.12",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.8",
        ],
        extras_require={"test": ["pytest>=7.0"]},
    )


safcrud_setup()  # pragma: no cover
