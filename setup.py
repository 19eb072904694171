#!/usr/bin/env python
# -*- coding: utf-8 -*-
from setuptools import setup, find_packages


deps = {
    'lake': [
        "aioboto3>=11.0.0",
        "async-service>=0.1.0a11",
        "botocore>=1.29.0",
        "lru-dict>=1.1.6",
        "eth-utils>=1.9.3",
        "termcolor>=1.1.0",
    ],
    'test': [
        "factory-boy>=3.2.0",
        "pytest>=7.0.0",
        "pytest-asyncio>=0.21.0",
        "pytest-timeout>=2.1.0",
    ],
    'lint': [
        "flake8>=6.0.0",
        "flake8-bugbear>=23.1.0",
        "mypy>=1.0.0",
    ],
    'dev': [
        "bumpversion>=0.5.3,<1",
        "wheel",
        "setuptools>=36.2.0",
        "tox>=3.0.0",
        "twine",
    ],
}

deps['dev'] = (
    deps['dev'] +
    deps['lake'] +
    deps['test'] +
    deps['lint']
)


install_requires = deps['lake']


with open('./README.md') as readme:
    long_description = readme.read()


setup(
    name='lake-framework',
    # *IMPORTANT*: Don't manually change the version here. Use the 'bumpversion' utility.
    version='0.1.0-alpha.1',
    description='Ordered, prefetching block streamer for the NEAR Lake S3 buckets',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='Lake Framework contributors',
    include_package_data=True,
    python_requires=">=3.8,<4",
    install_requires=install_requires,
    extras_require=deps,
    license='MIT',
    zip_safe=False,
    keywords='near blockchain indexer s3 lake',
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],
    entry_points={
        'console_scripts': [
            'lake=lake.main:main',
        ],
    },
)
