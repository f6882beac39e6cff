from setuptools import setup, find_packages
from pathlib import Path

this_directory = Path(__file__).parent.absolute()
long_description = Path(this_directory, 'README.md').read_text(encoding='utf-8')

setup(
    name='iocapture',
    description='Run a function and capture its sys.stdout, sys.stderr and logging output.',
    version='0.1.0',
    packages=find_packages(exclude=['test', 'test.*']),
    install_requires=['setuptools'],
    extras_require={'docs': ['pdoc3>=0.7'], 'test': ['pytest']},
    python_requires='>=3.10',
    zip_safe=False,
    license='MIT',
    long_description=long_description,
    long_description_content_type='text/markdown',
)
