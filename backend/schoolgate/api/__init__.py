# SchoolGate API routes
