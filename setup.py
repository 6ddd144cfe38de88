from setuptools import find_namespace_packages, setup

setup(
    name='infragraph',
    version='0.3',
    py_modules=['infragraph'],
    packages=find_namespace_packages(include=['modules', 'modules.*']),
    install_requires=[
        'Click>=8.0',
        'PyYAML',
        'python-hcl2',
        'GitPython',
        'graphviz',
        'requests',
        'tqdm'
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points='''
        [console_scripts]
        infragraph=infragraph:cli
    ''',
)
