"""
DeployMesh 项目构建配置

声明式基础设施编排 + 水平自动扩缩容
"""

from setuptools import setup, find_packages
import os

# 读取 README 文件
def read_readme():
    if not os.path.exists("README.md"):
        return ""
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

setup(
    name="deploymesh-core",
    version="0.1.0",
    author="Arsenal Team",
    author_email="liugaosheng@kanzhun.com",
    description="声明式部署编排与自动扩缩容 - DeployMesh",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=("tests", "tests.*", "examples", "examples.*")),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
        "Topic :: System :: Systems Administration",
    ],
    python_requires=">=3.9",
    install_requires=[
        "ray>=2.0,<2.55",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ],
    },
    include_package_data=True,
    package_data={
        "deploymesh": [
            "config/*.yaml",
        ],
    },
    zip_safe=False,
    keywords=[
        "infrastructure-as-code",
        "reconciliation",
        "autoscaling",
        "ray",
        "deployment",
        "cluster",
    ],
)
