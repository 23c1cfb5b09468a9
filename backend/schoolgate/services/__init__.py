# SchoolGate Services
