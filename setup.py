import setuptools
from pathlib import Path

ROOT = Path(__file__).parent


def read_requirements(filename: str = "requirements.txt") -> list[str]:
    req_path = ROOT / filename
    if not req_path.exists():
        return []
    reqs: list[str] = []
    for line in req_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        reqs.append(line)
    return reqs


long_description = (ROOT / "README.md").read_text(encoding="utf-8")

setuptools.setup(
    name="wyrmgrad",
    version="0.1.0a0",  # PEP 440 compliant
    description=(
        "wyrmgrad is a define-by-run reverse-mode automatic differentiation "
        "engine for NumPy, with lazy memoized evaluation, sparse embedding "
        "gradients and a row-partitioned CPU worker pool."
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache-2.0",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    package_dir={"": "src"},
    # subpackages without __init__.py are namespace packages
    packages=setuptools.find_namespace_packages(where="src", include=["wyrmgrad*"]),
    python_requires=">=3.10",
    install_requires=read_requirements(),
    extras_require={"test": ["pytest>=7"]},
    include_package_data=True,
    zip_safe=False,
)
