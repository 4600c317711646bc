"""
因果推論チュートリアル - セットアップスクリプト
"""

from setuptools import setup, find_packages
from pathlib import Path

# プロジェクトディレクトリ
PROJECT_DIR = Path(__file__).parent

# README を読み込み
with open(PROJECT_DIR / "README.md", encoding="utf-8") as f:
    long_description = f.read()

# requirements.txt を読み込み
with open(PROJECT_DIR / "requirements.txt", encoding="utf-8") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="causal-tutorials",
    version="1.0.0",
    description="統計ライブラリを使った因果推論のチュートリアル集（DID, RDD, IV, マッチング, 合成コントロールなど）",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["causal_tutorials", "causal_tutorials.*"]),
    package_data={"causal_tutorials": ["config.yaml"]},
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Education",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Mathematics",
    ],
    entry_points={
        "console_scripts": [
            "causal-tutorials=causal_tutorials.cli:main",
        ],
    },
    include_package_data=True,
    keywords="causal-inference econometrics difference-in-differences regression-discontinuity instrumental-variables",
)
